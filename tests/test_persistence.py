import os
import time

import pytest

from promptlang.persistence import PersistenceManager
from promptlang.schemas import ChainReport, SessionState, Turn
from promptlang.types import ChainOutcome, ChainState


class TestPersistence:

    def setup_method(self):
        self.session = SessionState(turns=[Turn(direction="q", answer="a", unit="u")],
                                    bindings={"AI": "a", "USER": ""})
        self.report = ChainReport(unit="u", outcome=ChainOutcome.NoMatch, trail=["u"],
                                  states=[ChainState.Idle, ChainState.Terminal])

    def test_manager_save_load(self, tmp_path):
        pm = PersistenceManager(base_path=str(tmp_path))
        path = pm.save_state("u", self.session, self.report)
        assert os.path.exists(path)
        assert path.endswith(".json")

        transcript = pm.load_state(path)
        assert transcript.unit == "u"
        assert transcript.session == self.session
        assert transcript.report.outcome == ChainOutcome.NoMatch
        assert transcript.report.states == [ChainState.Idle, ChainState.Terminal]

    def test_list_states_newest_first(self, tmp_path):
        pm = PersistenceManager(base_path=str(tmp_path))
        first = pm.save_state("u", self.session, self.report)
        time.sleep(0.02)
        second = pm.save_state("u", self.session, self.report)
        os.utime(first, (1, 1))
        pm.save_state("other", self.session, self.report)
        assert pm.list_states("u_") == [second, first]
        assert pm.get_latest_state("u") == second
        assert pm.get_latest_state("missing") is None

    def test_load_rejects_garbage(self, tmp_path):
        pm = PersistenceManager(base_path=str(tmp_path))
        bad = tmp_path / "bad.json"
        bad.write_text('{"unit": 1}')
        with pytest.raises(ValueError):
            pm.load_state(str(bad))
        with pytest.raises(FileNotFoundError):
            pm.load_state(str(tmp_path / "nope.json"))
