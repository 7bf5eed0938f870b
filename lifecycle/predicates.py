# controller/lifecycle/predicates.py
from __future__ import annotations

from typing import Callable

from connectors.store import ExpirableResource
from domain.ttl.policy import INSTALL_MODE_ALL_NAMESPACES, TTLControllerConfig

Predicate = Callable[[ExpirableResource], bool]


def is_being_terminated(res: ExpirableResource) -> bool:
    return res.deletion_timestamp is not None


def not_(pred: Predicate) -> Predicate:
    def _not(res: ExpirableResource) -> bool:
        return not pred(res)

    return _not


def all_of(*preds: Predicate) -> Predicate:
    def _all(res: ExpirableResource) -> bool:
        return all(p(res) for p in preds)

    return _all


def install_mode_predicate(cfg: TTLControllerConfig) -> Predicate:
    """
    Admit only resources in namespaces the controller is installed for.
    AllNamespaces admits everything.
    """
    if cfg.install_mode == INSTALL_MODE_ALL_NAMESPACES:
        return lambda res: True

    allowed = frozenset(cfg.target_namespaces)
    return lambda res: res.namespace in allowed


def default_predicate(cfg: TTLControllerConfig) -> Predicate:
    return all_of(not_(is_being_terminated), install_mode_predicate(cfg))
