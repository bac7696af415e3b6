"""Pausing and resuming scheduling onto nodes with the disruption taint."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from kubernetes.client import CoreV1Api
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from clusterstate.apis import (
    DISRUPTION_TAINT_KEY,
    disruption_no_schedule_taint,
    is_disrupting_taint,
    taint_to_dict,
)
from clusterstate.context import RequestContext, background
from clusterstate.errors import TaintPatchError, combine_errors
from clusterstate.state.statenode import StateNode

logger = logging.getLogger(__name__)


def set_scheduling_paused(
    core_api: CoreV1Api,
    nodes: Iterable[StateNode],
    paused: bool,
    ctx: Optional[RequestContext] = None,
) -> None:
    """Add (``paused=True``) or remove the disruption NoSchedule taint.

    Only nodes with both a Node and a NodeClaim are touched. Each Node is
    re-read before deciding, so the patch is computed against the live taint
    list rather than the cached one. Every node in the batch is attempted.

    Raises:
        SchedulingPauseError: one or more nodes could not be read or patched.
        OperationCancelled: ``ctx`` was cancelled; nodes after that point are
            not attempted.
    """
    ctx = ctx or background()
    errors: List[TaintPatchError] = []
    for state_node in nodes:
        if state_node.node is None or state_node.nodeclaim is None:
            continue
        name = state_node.node.metadata.name

        ctx.check("getting node")
        try:
            node = core_api.read_node(name, **ctx.request_kwargs())
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Node {name} is gone, skipping taint update")
                continue
            errors.append(TaintPatchError(name, "getting", e))
            continue
        except HTTPError as e:
            logger.error(f"Failed to get node {name}: {e}")
            errors.append(TaintPatchError(name, "getting", e))
            continue

        taints = list((node.spec.taints if node.spec else None) or [])
        has_taint = any(is_disrupting_taint(t) for t in taints)
        has_key = any(t.key == DISRUPTION_TAINT_KEY for t in taints)

        if not paused and not has_key:
            continue
        # Termination owns the taint from here on.
        if has_taint and node.metadata.deletion_timestamp is not None:
            continue

        if paused:
            if has_taint:
                desired = taints
            else:
                desired = [t for t in taints if t.key != DISRUPTION_TAINT_KEY]
                desired.append(disruption_no_schedule_taint())
        else:
            desired = [t for t in taints if t.key != DISRUPTION_TAINT_KEY]

        if desired == taints:
            continue

        ctx.check("patching node")
        body = {"spec": {"taints": [taint_to_dict(t) for t in desired]}}
        try:
            core_api.patch_node(name, body, **ctx.request_kwargs())
        except (ApiException, HTTPError) as e:
            logger.error(f"Failed to {'add' if paused else 'remove'} disruption taint on {name}: {e}")
            errors.append(TaintPatchError(name, "patching", e))
            continue
        logger.info(f"{'Added' if paused else 'Removed'} disruption taint on node {name}")

    err = combine_errors(errors)
    if err is not None:
        raise err
