from __future__ import annotations

import asyncio
from datetime import datetime

from story_engine.core.context import ContextReconciler, context_changes_from_reply, reconcile_context
from story_engine.core.types import HeavyContext, NormalizedTurn, NarrationMessage, StateUpdates

from conftest import ScriptedOracle

NOW = datetime(2024, 6, 1, 9, 30, 0)


def test_empty_change_set_is_no_update():
    prior = HeavyContext(main_mission="Find the relic", active_problems=["Storm"])
    assert reconcile_context(prior, {}) is None
    assert reconcile_context(prior, None) is None


def test_changes_that_change_nothing_are_no_update():
    prior = HeavyContext(main_mission="Find the relic", active_problems=["Storm"])
    changes = {
        "mainMission": {"action": "set", "value": "Find the relic"},
        "activeProblems": [{"action": "add", "value": "storm"}, {"action": "remove", "value": "Bandits"}],
    }
    assert reconcile_context(prior, changes) is None


def test_scalar_set_and_clear():
    prior = HeavyContext(main_mission="Find the relic", current_mission="Cross the river")
    updated = reconcile_context(
        prior,
        {
            "mainMission": {"action": "set", "value": "Destroy the relic"},
            "currentMission": {"action": "clear"},
        },
        now=NOW,
    )
    assert updated.main_mission == "Destroy the relic"
    assert updated.current_mission is None
    assert updated.last_updated == NOW


def test_set_with_empty_value_keeps_current():
    prior = HeavyContext(main_mission="Find the relic")
    changes = {"mainMission": {"action": "set", "value": "  "}}
    assert reconcile_context(prior, changes) is None


def test_list_add_remove_case_insensitive():
    prior = HeavyContext(current_concerns=["Hunger", "Wolves"])
    updated = reconcile_context(
        prior,
        {"currentConcerns": [{"action": "remove", "value": "wolves"}, {"action": "add", "value": "Cold"}]},
        now=NOW,
    )
    assert updated.current_concerns == ["Hunger", "Cold"]


def test_lists_capped_keeping_first_five():
    prior = HeavyContext(important_notes=["a", "b", "c", "d"])
    updated = reconcile_context(
        prior,
        {"importantNotes": [{"action": "add", "value": v} for v in ("e", "f", "g")]},
        now=NOW,
    )
    assert updated.important_notes == ["a", "b", "c", "d", "e"]


def test_reply_that_declines_has_no_changes():
    assert context_changes_from_reply('{"shouldUpdate": false, "changes": {"mainMission": {}}}') is None
    assert context_changes_from_reply('{"shouldUpdate": true, "changes": {"importantNotes": []}}') == {
        "importantNotes": []
    }


def _turn():
    return NormalizedTurn(
        messages=[NarrationMessage(text="The relic shatters.")],
        updates=StateUpdates(event_log="The relic was destroyed."),
    )


def test_reconciler_applies_oracle_changes(make_story):
    story = make_story()
    oracle = ScriptedOracle(
        {
            "heavy_context": {
                "shouldUpdate": True,
                "changes": {"activeProblems": [{"action": "add", "value": "Cult hunts Ada"}]},
            }
        }
    )
    reconciler = ContextReconciler(oracle, clock=lambda: NOW)
    updated = asyncio.run(reconciler.update(story, _turn()))
    assert updated.active_problems == ["Patrol drones", "Cult hunts Ada"]
    assert updated.main_mission == "Deliver the chip"
    assert updated.last_updated == NOW


def test_reconciler_failure_is_no_update(make_story):
    reconciler = ContextReconciler(ScriptedOracle({"heavy_context": RuntimeError("timeout")}))
    assert asyncio.run(reconciler.update(make_story(), _turn())) is None
    reconciler = ContextReconciler(ScriptedOracle({"heavy_context": "not json"}))
    assert asyncio.run(reconciler.update(make_story(), _turn())) is None
