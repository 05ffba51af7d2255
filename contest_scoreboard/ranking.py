"""
Full recomputation of derived scoreboard fields.

Best-score flags, totals, solved counts and ranks are always rebuilt from the
primary submission data; there is no incremental path.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from .models import Task, Team


def task_maxima(teams: Iterable[Team]) -> Dict[str, float]:
    """
    Highest non-null score per task across all teams.

    Tasks nobody has scored on are absent from the result.
    """
    maxima: Dict[str, float] = {}
    for team in teams:
        for task_id, submission in team.submissions.items():
            score = submission.score
            if score is None:
                continue
            if task_id not in maxima or score > maxima[task_id]:
                maxima[task_id] = score
    return maxima


def _sort_key(team: Team) -> Tuple[float, int, int]:
    # Descending total, then earliest solve first, teams without a solve last
    if team.last_solve_timestamp is None:
        return (-team.total_score, 1, 0)
    return (-team.total_score, 0, team.last_solve_timestamp)


def recompute(
    teams: Iterable[Team],
    tasks: Iterable[Task],
) -> List[Team]:
    """
    Rank teams from their current submissions.

    The input teams are not modified; new Team objects with copied
    submissions are returned in rank order. Submissions for tasks that are
    not in `tasks` are dropped.

    @param teams: Teams with their primary submission data
    @param tasks: Current tasks, in display order
    @return: Teams sorted by rank, with rank, total_score, solved and
        is_best_score filled in
    """
    task_ids = [task.id for task in tasks]
    source = list(teams)
    maxima = task_maxima(source)

    ranked: List[Team] = []
    for team in source:
        submissions = {}
        total = 0.0
        solved = 0
        for task_id in task_ids:
            submission = team.submissions.get(task_id)
            if submission is None:
                continue
            submission = submission.copy()
            score: Optional[float] = submission.score
            submission.is_best_score = score is not None and score == maxima.get(task_id)
            if score is not None:
                total += score
                if score > 0:
                    solved += 1
            submissions[task_id] = submission

        ranked.append(
            Team(
                id=team.id,
                name=team.name,
                solved=solved,
                total_score=total,
                submissions=submissions,
                last_solve_timestamp=team.last_solve_timestamp,
            )
        )

    # sorted() is stable: full ties keep input order
    ranked.sort(key=_sort_key)
    for position, team in enumerate(ranked):
        team.rank = position + 1
    return ranked
