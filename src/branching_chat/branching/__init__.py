from branching_chat.branching.resolver import build_context, resolve_branch, validate_branch_id

__all__ = ["build_context", "resolve_branch", "validate_branch_id"]
