"""Resolve which users may act on an expense at a given flow step."""
from __future__ import annotations

import logging
from typing import FrozenSet, Optional

from expenseflow.models import Expense
from expenseflow.services import store
from expenseflow.services.flow_registry import GroupStep, ManagerStep, RoleStep, Step, UserStep

logger = logging.getLogger(__name__)


def resolve_step_approvers(step: Optional[Step], expense: Expense) -> FrozenSet[int]:
    """Return the ids of the users empowered to decide at ``step``.

    Never raises for unresolvable input; an unknown submitter, a missing
    manager link or an empty role all yield an empty set.
    """
    if isinstance(step, ManagerStep):
        submitter = store.get_user(expense.submitter_user_id)
        if submitter is None or submitter.manager_id is None:
            logger.debug("Expense %s has no manager to route to", expense.id)
            return frozenset()
        return frozenset({submitter.manager_id})

    if isinstance(step, UserStep):
        return frozenset({step.user_id})

    if isinstance(step, GroupStep):
        return frozenset(step.user_ids)

    if isinstance(step, RoleStep):
        users = store.find_users(expense.company_id, step.role)
        return frozenset(user.id for user in users)

    return frozenset()
