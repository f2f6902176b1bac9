from keyrotator import UsageRecorder


def test_summary_and_recent():
    rec = UsageRecorder(history=3)
    rec.record("001", 200, 10.0)
    rec.record("001", 500, 30.0, "500 Internal Server Error")
    rec.record("002", None, 5.0, "network error: refused")
    rec.record("002", 200, 15.0)

    summary = rec.summary()
    assert summary["001"] == {
        "requests": 2,
        "errors": 1,
        "avg_latency_ms": 20.0,
        "last_status": 500,
    }
    assert summary["002"]["requests"] == 2  # noqa: PLR2004
    assert summary["002"]["last_status"] == 200  # noqa: PLR2004

    # history is bounded, totals are not
    assert [r.status for r in rec.recent()] == [500, None, 200]
    assert [r.status for r in rec.recent(limit=1)] == [200]
    assert [r.key_id for r in rec.recent(key_id="001")] == ["001"]


def test_query_is_json_ready():
    rec = UsageRecorder()
    rec.record("001", 200, 1.0)
    out = rec.query(limit=10)
    assert out["recent"][0]["key_id"] == "001"
    assert "at" in out["recent"][0]
