"""
Tests for the five-phase progress breakdown.
"""

from datetime import datetime, timedelta, timezone

from privfi.core.privacy import (
    FlowPhase,
    ProxyTxRefs,
    SwapRequest,
    describe_progress,
)


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_request(phase, **kwargs):
    return SwapRequest(
        user_address="0xabc",
        from_token="0x1",
        to_token="0x2",
        amount="100",
        slippage_bps=50,
        deposit_reference="0xdep",
        phase=phase,
        **kwargs,
    )


class TestDescribeProgress:
    """Tests for describe_progress."""

    def test_fresh_request(self):
        report = describe_progress(make_request(FlowPhase.WITHDRAWING), now=NOW)

        assert report.current_phase == 2
        assert [p.status for p in report.phases] == [
            "completed", "pending", "pending", "pending", "pending"
        ]
        assert report.total_progress == 20
        assert report.estimated_completion == NOW + timedelta(minutes=8)
        assert report.phases[0].tx_ref == "0xdep"

    def test_mid_flight(self):
        request = make_request(FlowPhase.REDEPOSITING, proxy_tx_refs=ProxyTxRefs(withdrawal="0xw", trade="0xt"))

        report = describe_progress(request, now=NOW)

        assert report.current_phase == 4
        assert [p.status for p in report.phases] == [
            "completed", "completed", "completed", "pending", "pending"
        ]
        assert report.total_progress == 60
        assert report.phases[2].tx_ref == "0xt"

    def test_completed(self):
        request = make_request(
            FlowPhase.COMPLETED,
            proxy_tx_refs=ProxyTxRefs(withdrawal="0xw", trade="0xt", redeposit="0xr"),
        )

        report = describe_progress(request, now=NOW)

        assert report.total_progress == 100
        assert report.current_phase == 5
        assert report.estimated_completion == NOW

    def test_failed_marks_failing_phase(self):
        request = make_request(
            FlowPhase.FAILED,
            failed_phase=FlowPhase.SWAPPING,
            error="no route",
            proxy_tx_refs=ProxyTxRefs(withdrawal="0xw"),
        )

        report = describe_progress(request, now=NOW)

        assert report.current_phase == 0
        assert [p.status for p in report.phases] == [
            "completed", "completed", "failed", "pending", "pending"
        ]
        assert report.error == "no route"
        assert report.estimated_completion == NOW

    def test_serializes(self):
        data = describe_progress(make_request(FlowPhase.SWAPPING), now=NOW).to_dict()

        assert data["currentPhase"] == 3
        assert len(data["phaseDetails"]) == 5
        assert data["metadata"]["slippageBps"] == 50
