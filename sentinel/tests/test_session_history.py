import pytest

from sentinel.errors import TrainingError
from sentinel.learning import STDPResult
from sentinel.training import SessionRecord, SessionState, TrainingHistory, TrainingSession
from sentinel.types import TrainingMode


def _closed_session(success=True):
    session = TrainingSession(mode=TrainingMode.BALANCED, sample_count=60)
    session.transition(SessionState.GATING)
    session.transition(SessionState.TRAINING_ANN)
    session.add_result("snn", STDPResult(accuracy=0.5, duration_ms=3.0, spike_count=12, samples_processed=60))
    if not success:
        session.mark_failed("boom")
    return session, session.close(success=success)


def test_closed_session_rejects_mutation():
    session, record = _closed_session()
    assert session.closed
    assert record.success
    with pytest.raises(TrainingError):
        session.add_result("ann", {})
    with pytest.raises(TrainingError):
        session.transition(SessionState.CHECKPOINTING)
    with pytest.raises(TrainingError):
        session.close(success=True)


def test_record_captures_results_and_states():
    _, record = _closed_session(success=False)
    assert record.states == ("gating", "training_ann", "failed")
    assert record.results["snn"]["spike_count"] == 12
    assert record.error == "boom"
    assert record.duration_ms >= 0.0
    assert SessionRecord.from_dict(record.to_dict()) == record


def test_skip_records_budget_note():
    session = TrainingSession(mode=TrainingMode.INTENSIVE)
    session.skip("meta", "duration budget exhausted")
    metrics = session.get_metrics()
    assert metrics["skipped_phases"] == ["meta"]
    assert session.close(success=True).budget_note == "duration budget exhausted"


def test_history_is_append_only_and_reloads(tmp_path):
    path = tmp_path / "history.jsonl"
    history = TrainingHistory(path)
    _, ok = _closed_session()
    _, failed = _closed_session(success=False)
    history.append(ok)
    history.append(failed)
    assert len(history) == 2
    assert history.successes() == 1
    assert history.failures() == 1

    path.write_text(path.read_text() + "not json\n")
    reloaded = TrainingHistory(path)
    assert [r.session_id for r in reloaded] == [ok.session_id, failed.session_id]
    assert reloaded.last().error == "boom"


def test_in_memory_history():
    history = TrainingHistory()
    assert history.last() is None
    _, record = _closed_session()
    history.append(record)
    assert history.records == (record,)
