"""
Branch resolution.

A conversation's turns form a forest; a branch is a path projected out of it,
never stored. 'resolve_branch' is the one canonical projection used both for
display and for building provider context:

- Trunk ("root"): every root user turn, each followed by at most one assistant
  reply. The canonical reply is the one whose 'branch_id' equals its 'model'
  (the reply made on the provider's own branch); otherwise the first one.
- Any other branch B: the root user turns shared by every branch, every turn
  whose 'branch_id' is B, and every assistant reply by model B to a root user
  turn, so context survives switching between branches.

Output is ordered by '(timestamp, seq)', so equal timestamps still resolve to
the same sequence on every call.
"""

import re
from collections.abc import Iterable

from branching_chat.config import ROOT_BRANCH
from branching_chat.conversation_database.data_models.turn import Turn
from branching_chat.errors import ValidationError
from branching_chat.llms.base import LLMMessage, Roles

BRANCH_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,63}$")


def validate_branch_id(branch_id: str) -> str:
    if not branch_id or not BRANCH_ID_PATTERN.match(branch_id):
        raise ValidationError(f"Malformed branch id: {branch_id!r}")
    return branch_id


def _is_root_user_turn(turn: Turn) -> bool:
    return turn.role == Roles.USER and turn.branch_id == ROOT_BRANCH


def _resolve_trunk(turns: list[Turn]) -> list[Turn]:
    replies: dict[str, list[Turn]] = {}
    for turn in turns:
        if turn.role == Roles.ASSISTANT and turn.parent_turn_id:
            replies.setdefault(turn.parent_turn_id, []).append(turn)

    resolved = []
    for turn in turns:
        if not _is_root_user_turn(turn):
            continue
        resolved.append(turn)
        candidates = replies.get(turn.id)
        if candidates:
            canonical = next((r for r in candidates if r.branch_id == r.model), candidates[0])
            resolved.append(canonical)
    return resolved


def _resolve_branch(turns: list[Turn], branch_id: str) -> list[Turn]:
    root_user_ids = {turn.id for turn in turns if _is_root_user_turn(turn)}
    return [
        turn
        for turn in turns
        if _is_root_user_turn(turn)
        or turn.branch_id == branch_id
        or (turn.role == Roles.ASSISTANT and turn.model == branch_id and turn.parent_turn_id in root_user_ids)
    ]


def resolve_branch(turns: Iterable[Turn], branch_id: str = ROOT_BRANCH) -> list[Turn]:
    """Return the turns on 'branch_id' in '(timestamp, seq)' order."""
    ordered = sorted(turns, key=lambda t: t.sort_key)
    if branch_id == ROOT_BRANCH:
        return _resolve_trunk(ordered)
    return _resolve_branch(ordered, branch_id)


def build_context(turns: Iterable[Turn], user_turn: Turn, branch_id: str, window: int) -> list[LLMMessage]:
    """
    History passed to a provider answering 'user_turn' on 'branch_id'.

    The resolved branch is cut strictly before 'user_turn' (its content is sent
    as the prompt), turns still streaming are dropped, and only the last
    'window' entries are kept.
    """
    history = []
    for turn in resolve_branch(turns, branch_id):
        if turn.id == user_turn.id or turn.sort_key >= user_turn.sort_key:
            break
        if turn.sealed:
            history.append(turn)
    return [LLMMessage(role=turn.role, content=turn.content) for turn in history[-window:]] if window > 0 else []
