"""
Multi-instance chain tests. Every instance is a real app; hops travel
through ClusterTransport instead of the network.
"""
from conftest import host_for, run_chain, walk


class TestEndToEnd:
    def test_two_instance_chain(self):
        response, calls = run_chain([1, 4], entry=1, seq="14")
        assert response.status_code == 200
        body = response.json()
        assert body["instance"] == 1
        assert body["chainPosition"] == 0
        assert body["totalChainTime"] >= 0
        assert len(body["childResponses"]) == 1

        child = body["childResponses"][0]
        assert child["instance"] == 4
        assert child["finalResult"]["status"] == "completed"
        assert child["childResponses"] == []
        assert calls == [("instance-1", "14"), ("instance-4", "4")]

    def test_full_walk_visits_in_order(self):
        response, calls = run_chain([1, 2, 3, 4], entry=3, seq="3214")
        assert response.status_code == 200
        assert [hop["instance"] for hop in walk(response.json())] == [3, 2, 1, 4]
        assert [seq for _, seq in calls] == ["3214", "214", "14", "4"]

    def test_duplicate_ids_still_terminate(self):
        response, _ = run_chain([1, 2], entry=1, seq="1212")
        assert response.status_code == 200
        assert [hop["instance"] for hop in walk(response.json())] == [1, 2, 1, 2]

    def test_entry_not_in_sequence_is_terminal(self):
        response, calls = run_chain([1, 2, 3, 4], entry=2, seq="134")
        body = response.json()
        assert response.status_code == 200
        assert body["chainPosition"] == -1
        assert "finalResult" in body
        assert len(calls) == 1


class TestTracePropagation:
    def test_supplied_trace_id_reaches_every_hop(self):
        trace_id = "abc-123 &weird=chars/+"
        response, _ = run_chain([1, 2, 3, 4], entry=1, seq="1234", trace_id=trace_id)
        hops = list(walk(response.json()))
        assert len(hops) == 4
        assert {hop["traceId"] for hop in hops} == {trace_id}

    def test_generated_trace_id_is_shared(self):
        response, _ = run_chain([1, 2, 3], entry=1, seq="123")
        trace_ids = {hop["traceId"] for hop in walk(response.json())}
        assert len(trace_ids) == 1
        assert trace_ids.pop().startswith("trace-")


class TestFailureIsolation:
    def test_unreachable_instance_reported_by_every_hop_above(self):
        # instance 3 is down
        response, calls = run_chain([1, 2, 4], entry=1, seq="1234", trace_id="t-iso")
        assert response.status_code == 500

        hops = list(walk(response.json()))
        assert [hop["instance"] for hop in hops] == [1, 2]
        for hop in hops:
            assert hop["error"] == "Failed to call instance 3"
            assert hop["failedInstance"] == 3
            assert hop["traceId"] == "t-iso"
            assert "totalChainTime" not in hop

        hosts = [host for host, _ in calls]
        assert host_for(3) in hosts
        assert host_for(4) not in hosts

    def test_first_hop_down(self):
        response, calls = run_chain([1], entry=1, seq="12")
        body = response.json()
        assert response.status_code == 500
        assert body["error"] == "Failed to call instance 2"
        assert body["childResponses"] == []
        assert len(calls) == 2


class TestRemovalDiscipline:
    def test_wrong_entry_relays_to_head(self):
        response, calls = run_chain([1, 2, 3, 4], entry=1, seq="3214", discipline="removal")
        assert response.status_code == 200
        body = response.json()
        # instance 1 only relayed; the root of the tree is instance 3
        assert [hop["instance"] for hop in walk(body)] == [3, 2, 1, 4]
        assert calls[0] == ("instance-1", "3214")
        assert calls[1] == ("instance-3", "3214")

    def test_relay_passes_downstream_failure_through(self):
        response, _ = run_chain([1, 3], entry=1, seq="32", discipline="removal")
        assert response.status_code == 500
        body = response.json()
        assert body["instance"] == 3
        assert body["error"] == "Failed to call instance 2"
