from __future__ import annotations

import json

import pytest

from story_engine.core.errors import OracleResponseError
from story_engine.core.response import decode_message, normalize_state, normalize_stats, parse_turn_response
from story_engine.core.types import DialogueMessage, NarrationMessage, SystemMessage


def test_decode_current_shape():
    message = decode_message({"type": "dialogue", "characterName": "Kai", "dialogue": "Move.", "voiceTone": "curt"})
    assert isinstance(message, DialogueMessage)
    assert (message.character_name, message.dialogue, message.voice_tone) == ("Kai", "Move.", "curt")


def test_decode_legacy_shape():
    narration = decode_message({"senderName": "Narrator", "text": "Fog rolls in."})
    speech = decode_message({"senderName": "Kai", "text": "Who goes there?"})
    system = decode_message({"senderName": "SYSTEM", "text": "Saved.", "type": "dialogue"})
    assert isinstance(narration, NarrationMessage)
    assert isinstance(speech, DialogueMessage) and speech.character_name == "Kai"
    assert isinstance(system, SystemMessage)


def test_decode_bare_string_is_narration():
    message = decode_message("Thunder.")
    assert isinstance(message, NarrationMessage) and message.text == "Thunder."


def test_parse_turn_response_normalizes_updates():
    reply = {
        "messages": [
            {"type": "narration", "text": "The market opens."},
            {"type": "dialogue", "characterName": "Vendor", "dialogue": ""},
            {
                "type": "dialogue",
                "characterName": "Lio",
                "dialogue": "Fresh noodles!",
                "newCharacterData": {"id": "npc-lio", "name": "Lio", "isPlayer": True},
            },
        ],
        "stateUpdates": {
            "newLocations": [{"id": "loc-stall", "name": "Noodle Stall"}, {"name": "no id"}],
            "updatedCharacters": [
                {"id": "player-1", "stats": [{"key": "gold", "value": "140"}], "relationships": {"npc-kai": 250}}
            ],
            "locationChange": "loc-stall",
            "eventLog": "Ada found the stall.",
        },
    }
    turn = parse_turn_response("Sure! ```json\n" + json.dumps(reply) + "\n```")
    assert [m.kind for m in turn.messages] == ["narration", "dialogue"]
    assert [loc.id for loc in turn.updates.new_locations] == ["loc-stall"]
    lifted = turn.updates.new_characters[0]
    assert lifted.id == "npc-lio" and lifted.is_player is False
    patch = turn.updates.updated_characters[0]
    assert patch.stats == {"gold": 140}
    assert patch.relationships == {"npc-kai": 100}
    assert patch.inventory is None
    assert turn.updates.location_change == "loc-stall"
    assert turn.updates.event_log == "Ada found the stall."


def test_parse_turn_response_tolerates_missing_sections():
    turn = parse_turn_response('{"messages": "oops"}')
    assert turn.messages == []
    assert turn.updates.new_characters == []


@pytest.mark.parametrize("reply", [None, "", "no json here", "[1, 2]", "{broken"])
def test_parse_turn_response_raises_on_total_failure(reply):
    with pytest.raises(OracleResponseError):
        parse_turn_response(reply)


def test_normalize_stats_drops_non_numeric():
    assert normalize_stats({"hp": "90", "mood": "grim"}) == {"hp": 90}


def test_normalize_state_defaults_to_idle():
    assert normalize_state("Fighting") == "fighting"
    assert normalize_state("dancing") == "idle"
    assert normalize_state(None) == "idle"
