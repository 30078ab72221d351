"""Job cost table.

Single source of truth for how many credits each job kind costs. Admission
debits this amount; refunds return whatever the original charge entry took,
so changing a price never skews a refund for a job already admitted.
"""

from app.core.errors import InvalidJobKind

JOB_COSTS: dict[str, int] = {
    "gen_image": 10,
    "gen_video": 25,
    "gen_audio": 5,
    "render": 15,
}


def get_job_cost(kind: str) -> int:
    """Return the credit cost for a job kind. Raises InvalidJobKind."""
    try:
        return JOB_COSTS[kind]
    except KeyError:
        raise InvalidJobKind(f"Unknown job kind '{kind}'") from None
