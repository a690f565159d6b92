from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from bfblocks.webui import SessionStore, create_app


class WebUIProgramApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(create_app())

    def test_translate_returns_block_graph(self) -> None:
        response = self.client.post("/api/translate", json={"source": "+[-]."})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["entry"], "entry")
        self.assertEqual(payload["loop_count"], 1)
        self.assertEqual(payload["tape_size"], 30000)
        self.assertEqual(payload["eof_policy"], "zero")
        labels = [block["label"] for block in payload["blocks"]]
        self.assertEqual(labels, ["entry", "loop0", "loop0.exit"])
        entry = payload["blocks"][0]
        self.assertEqual(entry["terminator"], {"kind": "branch", "targets": ["loop0", "loop0.exit"], "code": None})
        self.assertEqual(entry["operations"][0], {"kind": "adjust_cell", "amount": 1, "position": 0})
        self.assertIn("loop0.exit:", payload["listing"])

    def test_translate_empty_source(self) -> None:
        response = self.client.post("/api/translate", json={"source": ""})
        self.assertEqual(response.status_code, 200, response.text)
        blocks = response.json()["blocks"]
        self.assertEqual(len(blocks), 1)
        self.assertEqual(blocks[0]["terminator"]["kind"], "return")

    def test_translate_unmatched_bracket(self) -> None:
        response = self.client.post("/api/translate", json={"source": "+]"})
        self.assertEqual(response.status_code, 422, response.text)
        self.assertIn("position 1", response.json()["detail"])

    def test_translate_rejects_unknown_eof_policy(self) -> None:
        response = self.client.post("/api/translate", json={"source": "+", "eof_policy": "random"})
        self.assertEqual(response.status_code, 422, response.text)

    def test_run_program(self) -> None:
        response = self.client.post("/api/run", json={"source": "++++++++[>++++++++<-]>+.,.", "input": "z"})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["output"], [65, 122])
        self.assertEqual(payload["text"], "Az")
        self.assertEqual(payload["exit_code"], 0)
        self.assertGreater(payload["steps"], 0)

    def test_run_program_eof_policy(self) -> None:
        response = self.client.post("/api/run", json={"source": "+++,.", "eof_policy": "unchanged"})
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["output"], [3])

    def test_run_program_step_limit(self) -> None:
        response = self.client.post("/api/run", json={"source": "+[]", "max_steps": 10})
        self.assertEqual(response.status_code, 409, response.text)


class WebUISessionApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SessionStore()
        self.client = TestClient(create_app(self.store))

    def _create_session(self, *, source: str = ".", **payload):
        body = {"source": source}
        body.update(payload)
        response = self.client.post("/api/session", json=body)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_create_session_returns_initial_state(self) -> None:
        data = self._create_session(input="A")
        self.assertIn("session_id", data)
        self.assertEqual(data["labels"], ["entry"])
        self.assertEqual(len(data["history"]), data["history_size"])
        self.assertEqual(data["state"]["step"], 0)
        self.assertEqual(data["state"]["block"], "entry")
        self.assertFalse(data["finished"])
        self.assertEqual(data["total_steps"], 2)
        self.assertFalse(data["total_steps_capped"])
        self.assertEqual(len(self.store), 1)

    def test_create_session_unmatched_bracket(self) -> None:
        response = self.client.post("/api/session", json={"source": "[["})
        self.assertEqual(response.status_code, 422, response.text)
        self.assertEqual(len(self.store), 0)

    def test_injected_empty_store_receives_sessions(self) -> None:
        store = SessionStore()
        self.assertEqual(len(store), 0)
        client = TestClient(create_app(store))
        response = client.post("/api/session", json={"source": "+"})
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(len(store), 1)
        session_id = response.json()["session_id"]
        self.assertEqual(store.get(session_id).source, "+")

        store.clear()
        self.assertEqual(client.get(f"/api/session/{session_id}").status_code, 404)

    def test_states_flag_block_entry(self) -> None:
        data = self._create_session(source="[]")
        session_id = data["session_id"]
        response = self.client.post(f"/api/session/{session_id}/step", json={"count": 3})
        self.assertEqual(response.status_code, 200, response.text)
        states = response.json()["states"]
        self.assertEqual([state["entered"] for state in states], [False, True, False])
        self.assertEqual(states[1]["block"], "loop0.exit")

    def test_infinite_program_caps_total_steps(self) -> None:
        data = self._create_session(source="+[]")
        self.assertTrue(data["total_steps_capped"])

    def test_step_advances_state(self) -> None:
        data = self._create_session(source="++.")
        session_id = data["session_id"]

        response = self.client.post(f"/api/session/{session_id}/step", json={"count": 2})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(len(payload["states"]), 2)
        self.assertEqual(payload["states"][0]["step"], 1)
        self.assertEqual(payload["states"][1]["step"], 2)
        self.assertEqual(payload["states"][1]["command"], "adjust_cell +1")
        self.assertEqual(len(payload["history"]), payload["history_size"])
        self.assertFalse(payload["finished"])

    def test_reset_restores_initial_state(self) -> None:
        data = self._create_session(source="+.")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/step", json={"count": 1})

        response = self.client.post(f"/api/session/{session_id}/reset")
        self.assertEqual(response.status_code, 200, response.text)
        reset_payload = response.json()
        self.assertEqual(reset_payload["state"]["step"], 0)
        self.assertEqual(len(reset_payload["history"]), 1)
        self.assertFalse(reset_payload["finished"])

    def test_reset_clears_breakpoints(self) -> None:
        data = self._create_session(source="+[-]")
        session_id = data["session_id"]

        add = self.client.post(f"/api/session/{session_id}/breakpoints", json={"label": "loop0"})
        self.assertEqual(add.status_code, 200, add.text)

        reset = self.client.post(f"/api/session/{session_id}/reset")
        self.assertEqual(reset.status_code, 200, reset.text)
        self.assertEqual(reset.json()["breakpoints"], [])

    def test_step_limit_conflict(self) -> None:
        data = self._create_session(source="++", max_steps=1)
        session_id = data["session_id"]

        ok = self.client.post(f"/api/session/{session_id}/step", json={"count": 1})
        self.assertEqual(ok.status_code, 200, ok.text)

        conflict = self.client.post(f"/api/session/{session_id}/step", json={"count": 1})
        self.assertEqual(conflict.status_code, 409, conflict.text)
        self.assertIn("detail", conflict.json())

    def test_add_and_remove_breakpoint(self) -> None:
        data = self._create_session(source="+[-]")
        session_id = data["session_id"]

        added = self.client.post(f"/api/session/{session_id}/breakpoints", json={"label": "loop0.exit"})
        self.assertEqual(added.status_code, 200, added.text)
        self.assertIn("loop0.exit", added.json()["breakpoints"])

        removed = self.client.delete(f"/api/session/{session_id}/breakpoints/loop0.exit")
        self.assertEqual(removed.status_code, 200, removed.text)
        self.assertNotIn("loop0.exit", removed.json()["breakpoints"])

        missing = self.client.delete(f"/api/session/{session_id}/breakpoints/loop0.exit")
        self.assertEqual(missing.status_code, 404, missing.text)

    def test_breakpoint_on_unknown_block(self) -> None:
        data = self._create_session(source="+")
        response = self.client.post(
            f"/api/session/{data['session_id']}/breakpoints",
            json={"label": "loop3"},
        )
        self.assertEqual(response.status_code, 422, response.text)

    def test_run_until_break_hits_breakpoint(self) -> None:
        data = self._create_session(source="++[-].")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/breakpoints", json={"label": "loop0.exit"})

        response = self.client.post(f"/api/session/{session_id}/run", json={"limit": 100})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["hit_breakpoint"], "loop0.exit")
        self.assertFalse(payload["finished"])

    def test_run_to_completion_ignore_breakpoints(self) -> None:
        data = self._create_session(source="++[-].")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/breakpoints", json={"label": "loop0"})

        response = self.client.post(
            f"/api/session/{session_id}/run",
            json={"limit": 10000, "ignore_breakpoints": True},
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertTrue(payload["finished"])
        self.assertEqual(payload["breakpoints"], ["loop0"])
        self.assertEqual(payload["states"][-1]["output"], [0])
        self.assertTrue(payload["states"][-1]["halted"])
        self.assertGreaterEqual(payload["total_steps"], payload["history"][-1]["step"])

    def test_unknown_session(self) -> None:
        response = self.client.get("/api/session/does-not-exist")
        self.assertEqual(response.status_code, 404)
        response = self.client.post("/api/session/does-not-exist/step", json={"count": 1})
        self.assertEqual(response.status_code, 404)

    def test_delete_session(self) -> None:
        data = self._create_session(source="+")
        session_id = data["session_id"]
        deleted = self.client.delete(f"/api/session/{session_id}")
        self.assertEqual(deleted.status_code, 204)
        again = self.client.delete(f"/api/session/{session_id}")
        self.assertEqual(again.status_code, 404)


if __name__ == "__main__":
    unittest.main()
