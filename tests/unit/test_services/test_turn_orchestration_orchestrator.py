"""Unit tests for the turn orchestrator across scenario modes."""

import random

import pytest

from src.api.services.summary_sink import MemorySummarySink
from src.api.services.turn_orchestration.addressing import AddressResolver
from src.api.services.turn_orchestration.errors import CollaboratorError, ConversationCompletedError
from src.api.services.turn_orchestration.orchestrator import TurnOrchestrator
from src.api.services.turn_orchestration.policy import COVER_OPENERS, SinglePolicy
from src.api.services.turn_orchestration.settings import ScenarioResolver
from src.api.services.turn_orchestration.types import (
    NO_ANSWER_SENTINEL,
    TurnDirective,
    TurnState,
    TurnTimingSettings,
)


class _ScriptedRng(random.Random):
    """Random whose ``choice`` returns pre-agreed picks in order."""

    def __init__(self, picks):
        super().__init__(0)
        self.picks = list(picks)

    def choice(self, seq):
        pick = self.picks.pop(0)
        assert pick in seq
        return pick


def _orchestrator(mode, personas, problem, client, clock, *, rng=None, sink=None, timing=None):
    config = ScenarioResolver.resolve(mode=mode, personas=personas)
    return TurnOrchestrator(
        conversation_id=f"{mode}-test",
        config=config,
        problem=problem,
        client=client,
        participant_id="p-1",
        timing=timing or TurnTimingSettings(),
        rng=rng,
        scheduler=clock,
        summary_sink=sink,
        default_model_id="test-model",
        default_temperature=0.5,
    )


def _committed(orchestrator):
    return [(m.speaker, m.text) for m in orchestrator.state.committed_messages()]


def _placeholders(orchestrator):
    return [m for m in orchestrator.state.messages if m.placeholder]


@pytest.mark.asyncio
async def test_single_mode_interrupt_discards_stale_generation(personas, problem, clock, make_client, settle_tasks):
    client = make_client(hold=True)
    orchestrator = _orchestrator("single", personas, problem, client, clock)
    await orchestrator.start()

    await orchestrator.submit_learner_message("42")
    await settle_tasks()
    assert orchestrator.state.turn == TurnState.GENERATING_AGENT
    assert len(_placeholders(orchestrator)) == 1

    second = await orchestrator.submit_learner_message("43")
    await settle_tasks()
    assert len(client.pending) == 2
    assert len(_placeholders(orchestrator)) == 1

    client.release(0, "Stale feedback about 42")
    client.release(1, "Why do you think it is 43?")
    await orchestrator.wait_idle()

    assert _committed(orchestrator) == [
        ("user", "42"),
        ("user", "43"),
        ("bob", "Why do you think it is 43?"),
    ]
    assert orchestrator.state.pending_context == (second,)
    assert client.calls[1][0] == (second,)
    assert _placeholders(orchestrator) == []
    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER
    await orchestrator.close()


@pytest.mark.asyncio
async def test_ids_stay_monotonic_across_cancellations(personas, problem, clock, make_client, settle_tasks):
    client = make_client(hold=True)
    orchestrator = _orchestrator("single", personas, problem, client, clock)
    await orchestrator.start()

    issued = []
    orchestrator.state.messages.subscribe(
        lambda kind, utterance: issued.append(utterance.id) if kind == "utterance_appended" else None
    )
    for text in ["40", "41", "42"]:
        await orchestrator.submit_learner_message(text)
        await settle_tasks()
    client.release(0, "stale 40")
    client.release(1, "stale 41")
    client.release(2, "ok")
    await orchestrator.wait_idle()

    assert issued == sorted(set(issued))
    ids = [m.id for m in orchestrator.state.messages]
    assert ids == sorted(ids)
    await orchestrator.close()


@pytest.mark.asyncio
async def test_at_most_one_generation_in_flight(personas, problem, clock, make_client, settle_tasks):
    client = make_client(hold=True)
    orchestrator = _orchestrator("multi", personas, problem, client, clock, rng=random.Random(3))
    max_placeholders = []
    orchestrator.subscribe(lambda event: max_placeholders.append(len(_placeholders(orchestrator))))

    await orchestrator.start("42")
    await settle_tasks()
    await orchestrator.submit_learner_message("actually 41")
    await settle_tasks()
    await orchestrator.submit_learner_message("no, 42")
    await settle_tasks()

    for index in range(len(client.pending)):
        if not client.pending[index].done():
            client.release(index, "Sounds right.")
        await settle_tasks()

    assert max(max_placeholders) <= 1
    await orchestrator.close()


@pytest.mark.asyncio
async def test_reentrant_start_is_a_logged_noop(personas, problem, clock, make_client, settle_tasks):
    client = make_client(hold=True)
    orchestrator = _orchestrator("single", personas, problem, client, clock)
    await orchestrator.start()
    await orchestrator.submit_learner_message("42")
    await settle_tasks()

    extra = TurnDirective(persona_id="bob", phase="tutor_reply", context=(), instruction="again")
    assert orchestrator._start_turn(extra) is False
    await settle_tasks()
    assert len(client.calls) == 1
    await orchestrator.close()


@pytest.mark.asyncio
async def test_group_peer_hop_is_bounded_to_learner(personas, problem, clock, make_client):
    client = make_client([
        "I got 42 by multiplying.\n\n@Charlie, do you agree?",
        "@Alice yes, 6 x 7 is 42.",
    ])
    rng = _ScriptedRng(["arithmetic", "concept"])
    orchestrator = _orchestrator("group", personas, problem, client, clock, rng=rng)
    await orchestrator.start()

    await orchestrator.submit_learner_message("I think it is 42")
    await orchestrator.wait_idle()

    speakers = [options.persona_id for _, options in client.calls]
    assert speakers == ["arithmetic", "concept"]

    resolver = AddressResolver.for_personas(orchestrator.config.participants)
    hop = orchestrator.state.committed_messages()[-1]
    assert hop.speaker == "concept"
    assert resolver.resolve(hop.text) == "user"
    assert orchestrator.state.phase == "second_hop"
    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER
    await orchestrator.close()


@pytest.mark.asyncio
async def test_group_learner_addressing_a_peer_overrides_random_pick(personas, problem, clock, make_client):
    client = make_client(["Because 6 times 7 is 42."])
    rng = _ScriptedRng(["user"])
    orchestrator = _orchestrator("group", personas, problem, client, clock, rng=rng)
    await orchestrator.start()

    await orchestrator.submit_learner_message("@Charlie how did you get that?")
    await orchestrator.wait_idle()

    assert client.calls[0][1].persona_id == "concept"
    last = orchestrator.state.committed_messages()[-1]
    assert last.text.endswith("@User, what do you think about this?")
    await orchestrator.close()


@pytest.mark.asyncio
async def test_multi_mode_pipeline_then_addressee_round(personas, problem, clock, make_client):
    client = make_client([
        "I got 42.",
        "I think it is 48.",
        "Alice is right.\n\n@Charlie, which operation did you use?",
        "I added instead of multiplying.",
        "Good catch.",
    ])
    rng = _ScriptedRng(["concept", "user"])
    orchestrator = _orchestrator("multi", personas, problem, client, clock, rng=rng)
    await orchestrator.start("42")
    await orchestrator.wait_idle()

    speakers = [options.persona_id for _, options in client.calls]
    assert speakers == ["arithmetic", "concept", "bob", "concept", "bob"]

    tutor_prompt = client.calls[2][1].system_prompt
    peer_prompt = client.calls[0][1].system_prompt
    assert "CORRECT ANSWER: 42" in tutor_prompt
    assert "CORRECT ANSWER" not in peer_prompt
    assert client.calls[0][1].model_id == "test-model"
    assert client.calls[0][1].temperature == 0.5

    final = orchestrator.state.committed_messages()[-1]
    assert final.speaker == "bob"
    assert final.text == "Good catch.\n\n@User, what do you think about this?"
    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER
    await orchestrator.close()


@pytest.mark.asyncio
async def test_multi_pipeline_restarts_after_first_peer_fails(personas, problem, clock, make_client):
    client = make_client([
        CollaboratorError("model unavailable"),
        "I got 42.",
        "I think it is 48.",
        "Alice is right. @User",
        "Exactly.",
    ])
    rng = _ScriptedRng(["user", "user"])
    orchestrator = _orchestrator("multi", personas, problem, client, clock, rng=rng)
    await orchestrator.start("I think 40")
    await orchestrator.wait_idle()
    assert orchestrator.state.round_started is False

    await orchestrator.submit_learner_message("still 40?")
    await orchestrator.wait_idle()

    speakers = [options.persona_id for _, options in client.calls]
    assert speakers == ["arithmetic", "arithmetic", "concept", "bob"]
    assert orchestrator.state.round_started is True

    await orchestrator.submit_learner_message("ok, 42")
    await orchestrator.wait_idle()
    assert client.calls[-1][1].persona_id == "bob"
    assert orchestrator.state.phase == "tutor_followup"
    await orchestrator.close()


@pytest.mark.asyncio
async def test_multi_pipeline_resumes_with_next_peer_after_interruption(personas, problem, clock, make_client, settle_tasks):
    client = make_client(hold=True)
    rng = _ScriptedRng(["user"])
    orchestrator = _orchestrator("multi", personas, problem, client, clock, rng=rng)
    await orchestrator.start("40")
    await settle_tasks(20)

    client.release(0, "I got 42.")
    await settle_tasks(20)
    assert [options.persona_id for _, options in client.calls] == ["arithmetic", "concept"]

    await orchestrator.submit_learner_message("wait, is it 42?")
    await settle_tasks(20)
    client.release(1, "Stale answer from Charlie")
    client.release(2, "I think it is 48.")
    await settle_tasks(20)
    client.release(3, "Alice is right. @User")
    await orchestrator.wait_idle()

    assert [options.persona_id for _, options in client.calls] == ["arithmetic", "concept", "concept", "bob"]
    assert _committed(orchestrator) == [
        ("user", "40"),
        ("arithmetic", "I got 42."),
        ("user", "wait, is it 42?"),
        ("concept", "I think it is 48."),
        ("bob", "Alice is right. @User"),
    ]
    assert orchestrator.state.round_started is True
    await orchestrator.close()


@pytest.mark.asyncio
async def test_generation_failure_returns_control_to_learner(personas, problem, clock, make_client):
    client = make_client([CollaboratorError("model unavailable")])
    orchestrator = _orchestrator("single", personas, problem, client, clock)
    events = []
    orchestrator.subscribe(events.append)
    await orchestrator.start()

    await orchestrator.submit_learner_message("42")
    await orchestrator.wait_idle()

    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER
    assert orchestrator.state.generation is None
    assert _placeholders(orchestrator) == []
    assert "model unavailable" in orchestrator.state.last_error
    assert orchestrator._inactivity.armed is None
    failed = [e for e in events if e["type"] == "generation_failed"]
    assert failed == [{
        "type": "generation_failed",
        "conversation_id": "single-test",
        "persona_id": "bob",
        "error": "model unavailable",
    }]
    await orchestrator.close()


@pytest.mark.asyncio
async def test_group_inactivity_cover_is_capped(personas, problem, clock, make_client):
    client = make_client([
        "I got 42.\n\n@User, how about you?",
        "Hey! I know this one! It's 42.",
        "Oh! It really is 42.",
    ])
    rng = _ScriptedRng(["arithmetic", "user", COVER_OPENERS[0], COVER_OPENERS[2], "concept", "user"])
    orchestrator = _orchestrator("group", personas, problem, client, clock, rng=rng)
    events = []
    orchestrator.subscribe(events.append)
    await orchestrator.start()

    await orchestrator.submit_learner_message("hmm")
    await orchestrator.wait_idle()
    first_speaker = orchestrator.state.committed_messages()[-1].speaker
    assert orchestrator._inactivity.armed is not None

    clock.advance(30)
    await orchestrator.wait_idle()
    cover = orchestrator.state.committed_messages()[-1]
    assert cover.speaker != first_speaker
    assert orchestrator.state.phase == "cover"
    assert orchestrator.state.compensations == 1

    clock.advance(30)
    await orchestrator.wait_idle()
    assert orchestrator.state.compensations == 2
    assert orchestrator._inactivity.armed is None
    assert len([e for e in events if e["type"] == "watchdog_fired"]) == 2

    await orchestrator.submit_learner_message("ok it is 42")
    assert orchestrator.state.compensations == 0
    await orchestrator.close()


@pytest.mark.asyncio
async def test_single_inactivity_nudges_once(personas, problem, clock, make_client):
    client = make_client(["What is 6 x 7?", "Try 6 + 6 + 6 + 6 + 6 + 6 + 6."])
    orchestrator = _orchestrator("single", personas, problem, client, clock)
    await orchestrator.start("I don't know")
    await orchestrator.wait_idle()

    clock.advance(30)
    await orchestrator.wait_idle()
    assert orchestrator.state.phase == "tutor_nudge"
    assert len(client.calls) == 2

    clock.advance(30)
    await orchestrator.wait_idle()
    assert len(client.calls) == 2
    await orchestrator.close()


@pytest.mark.asyncio
async def test_solo_mode_never_calls_collaborator(personas, problem, clock, make_client):
    client = make_client()
    orchestrator = _orchestrator("solo", personas, problem, client, clock)
    await orchestrator.start("42")
    await orchestrator.submit_learner_message("still 42")
    await orchestrator.wait_idle()
    clock.advance(60)

    assert client.calls == []
    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER
    await orchestrator.close()


@pytest.mark.asyncio
async def test_cancel_generation_discards_late_result(personas, problem, clock, make_client, settle_tasks):
    client = make_client(hold=True)
    orchestrator = _orchestrator("single", personas, problem, client, clock)
    await orchestrator.start()
    await orchestrator.submit_learner_message("42")
    await settle_tasks()

    assert orchestrator.cancel_generation("user_stop") is True
    assert orchestrator.cancel_generation() is False
    assert _placeholders(orchestrator) == []

    client.release(0, "too late")
    await orchestrator.wait_idle()
    assert _committed(orchestrator) == [("user", "42")]
    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER
    await orchestrator.close()


@pytest.mark.asyncio
async def test_finish_requires_think_time_and_hands_off_once(personas, problem, clock, make_client):
    sink = MemorySummarySink()
    orchestrator = _orchestrator("single", personas, problem, make_client(["Nice."]), clock, sink=sink)
    events = []
    orchestrator.subscribe(events.append)
    await orchestrator.start("42")
    await orchestrator.wait_idle()

    with pytest.raises(ValueError, match="minimum think time"):
        await orchestrator.finish("42")

    clock.advance(10)
    assert orchestrator.state.can_submit_final is True
    assert any(e["type"] == "submit_enabled" for e in events)

    summary = await orchestrator.finish(" 42 ")
    again = await orchestrator.finish("41")

    assert again is summary
    assert sink.summaries == [summary]
    assert summary.final_answer == "42"
    assert summary.correctness is True
    assert summary.timed_out is False
    assert [m["speaker"] for m in summary.transcript] == ["user", "bob"]
    assert orchestrator.state.turn == TurnState.COMPLETED

    with pytest.raises(ConversationCompletedError):
        await orchestrator.submit_learner_message("wait")
    await orchestrator.close()


@pytest.mark.asyncio
async def test_deadline_force_completes_with_sentinel(personas, problem, clock, make_client, settle_tasks):
    sink = MemorySummarySink()
    client = make_client(hold=True)
    timing = TurnTimingSettings(session_deadline_seconds=120)
    orchestrator = _orchestrator("single", personas, problem, client, clock, sink=sink, timing=timing)
    await orchestrator.start()
    await orchestrator.submit_learner_message("thinking...")
    await settle_tasks()

    clock.advance(120)
    await settle_tasks()
    client.release(0, "too late")
    await orchestrator.wait_idle()

    assert len(sink.summaries) == 1
    summary = sink.summaries[0]
    assert summary.final_answer == NO_ANSWER_SENTINEL
    assert summary.timed_out is True
    assert summary.correctness is False
    assert all(not m["placeholder"] for m in summary.transcript)
    assert orchestrator.state.completed is True
    await orchestrator.close()


@pytest.mark.asyncio
async def test_missing_placeholder_resets_conversation(personas, problem, clock, make_client, settle_tasks):
    client = make_client(hold=True)
    orchestrator = _orchestrator("single", personas, problem, client, clock)
    events = []
    orchestrator.subscribe(events.append)
    await orchestrator.start()
    await orchestrator.submit_learner_message("42")
    await settle_tasks()

    placeholder = _placeholders(orchestrator)[0]
    orchestrator.state.messages.remove(placeholder.id)
    client.release(0, "reply")
    await orchestrator.wait_idle()

    assert any(e["type"] == "conversation_reset" for e in events)
    assert len(orchestrator.state.messages) == 0
    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER

    utterance = await orchestrator.submit_learner_message("starting over")
    assert utterance.id > placeholder.id
    await orchestrator.close()


@pytest.mark.asyncio
async def test_snapshot_and_feed_events(personas, problem, clock, make_client):
    orchestrator = _orchestrator("single", personas, problem, make_client(["Why?"]), clock)
    events = []
    orchestrator.subscribe(events.append)
    await orchestrator.start()
    await orchestrator.submit_learner_message("42")
    await orchestrator.wait_idle()

    types = [e["type"] for e in events]
    assert types.index("utterance_appended") < types.index("utterance_replaced")
    assert types[-1] == "turn_state"
    assert events[-1]["state"] == "awaiting_learner"

    snapshot = orchestrator.snapshot()
    assert snapshot["mode"] == "single"
    assert snapshot["turn"] == "awaiting_learner"
    assert [m["text"] for m in snapshot["messages"]] == ["42", "Why?"]
    assert snapshot["participants"] == [{"id": "bob", "display_name": "Bob", "role": "tutor"}]
    await orchestrator.close()


@pytest.mark.asyncio
async def test_empty_learner_message_is_rejected(personas, problem, clock, make_client):
    orchestrator = _orchestrator("single", personas, problem, make_client(), clock)
    await orchestrator.start()
    with pytest.raises(ValueError, match="empty"):
        await orchestrator.submit_learner_message("   ")
    await orchestrator.close()


class _GhostFollowUpPolicy(SinglePolicy):
    def on_agent_utterance(self, state, utterance):
        return TurnDirective(persona_id="ghost", phase="tutor_reply", context=(), instruction="hi")


@pytest.mark.asyncio
async def test_unknown_persona_after_commit_returns_control_to_learner(personas, problem, clock, make_client):
    config = ScenarioResolver.resolve(mode="single", personas=personas)
    policy = _GhostFollowUpPolicy(config=config, resolver=AddressResolver.for_personas(config.participants))
    client = make_client(["Why 42?"])
    orchestrator = TurnOrchestrator(
        conversation_id="ghost-test",
        config=config,
        problem=problem,
        client=client,
        scheduler=clock,
        policy=policy,
    )
    await orchestrator.start()

    await orchestrator.submit_learner_message("42")
    await orchestrator.wait_idle()

    assert len(client.calls) == 1
    assert _committed(orchestrator) == [("user", "42"), ("bob", "Why 42?")]
    assert orchestrator.state.turn == TurnState.AWAITING_LEARNER
    assert "ghost" in orchestrator.state.last_error
    await orchestrator.close()
