"""
Discord UI for assigning a developer to a freshly created issue.
"""

import logging
from typing import List

import discord

from .assignment import PendingSelections
from .config import SELECTION_TTL_SECONDS
from .tracker import IssueTracker

log = logging.getLogger("red.forum_mirror.views")

MAX_SELECT_OPTIONS = 25


class AssigneeSelect(discord.ui.Select):
    def __init__(self, issue_number: int, collaborators: List[str]):
        options = [discord.SelectOption(label=login, value=login) for login in collaborators[:MAX_SELECT_OPTIONS]]
        super().__init__(
            placeholder="Select a developer to assign",
            min_values=1,
            max_values=1,
            options=options,
        )
        self.issue_number = issue_number

    async def callback(self, interaction: discord.Interaction):
        view: "AssigneeView" = self.view  # type: ignore
        login = self.values[0]
        view.selections.select(interaction.user.id, self.issue_number, login)
        await interaction.response.send_message(f"Selected developer: {login}", ephemeral=True)


class AssigneeView(discord.ui.View):
    """Select + confirm pair posted under the 'issue created' message."""

    def __init__(self, tracker: IssueTracker, selections: PendingSelections, issue_number: int, collaborators: List[str]):
        super().__init__(timeout=SELECTION_TTL_SECONDS)
        self.tracker = tracker
        self.selections = selections
        self.issue_number = issue_number
        self.add_item(AssigneeSelect(issue_number, collaborators))

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.primary)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        login = self.selections.get(interaction.user.id, self.issue_number)
        if not login:
            await interaction.response.send_message("Please select a developer before confirming.", ephemeral=True)
            return

        try:
            await self.tracker.assign_issue(self.issue_number, login)
        except Exception:
            log.exception("Failed to assign %s to issue #%s", login, self.issue_number)
            await interaction.response.send_message("Failed to assign developer.", ephemeral=True)
            return

        self.selections.pop(interaction.user.id, self.issue_number)
        log.info("Assigned %s to issue #%s", login, self.issue_number)
        await interaction.response.send_message(
            f"Developer {login} assigned to issue #{self.issue_number} successfully!", ephemeral=True
        )

    async def on_timeout(self):
        for item in self.children:
            item.disabled = True
