"""
Plain-text scoreboard rendering.
"""

from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader

from .models import ContestStatus, Task, Team

TEMPLATES_PATH = Path(__file__).parent / "templates"


class ScoreboardRenderer:
    """Renders the ranked scoreboard as text for consoles and text/plain clients."""

    def __init__(
        self,
        contest_name: str,
        templates_path: Path = TEMPLATES_PATH,
    ) -> None:
        self.contest_name = contest_name
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(templates_path)),
            auto_reload=False,
            cache_size=50,
            keep_trailing_newline=True,
        )

    def render(
        self,
        teams: List[Team],
        tasks: List[Task],
        status: ContestStatus,
        limit: Optional[int] = None,
    ) -> str:
        """
        Render teams in rank order.

        @param teams: Ranked teams
        @param tasks: Tasks in display order
        @param status: Current contest status
        @param limit: Maximum number of teams to show
        @return: Scoreboard text
        """
        shown = teams[:limit] if limit is not None else teams
        template = self.jinja_env.get_template("scoreboard.txt.j2")
        return template.render(
            contest_name=self.contest_name,
            status=status.value,
            teams=shown,
            tasks=tasks,
            hidden=len(teams) - len(shown),
        )
