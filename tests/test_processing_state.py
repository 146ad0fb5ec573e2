import pytest

from resume_engine.exceptions import DocumentNotFoundError, InvalidTransitionError
from resume_engine.services import processing_state as states
from resume_engine.services.processing_state import ProcessingStatus, check_transition


class TestCheckTransition:
    def _status(self, state, progress=0):
        return ProcessingStatus(state=state, progress=progress)

    @pytest.mark.parametrize(
        "current, target",
        [
            (states.PENDING, states.UPLOADING),
            (states.UPLOADING, states.PARSING),
            (states.PARSING, states.ANALYZING),
            (states.ANALYZING, states.COMPLETED),
        ],
    )
    def test_forward_edges(self, current, target):
        assert check_transition("d", self._status(current, 10), target, 20) == 20

    @pytest.mark.parametrize(
        "current, target",
        [
            (states.PENDING, states.PARSING),
            (states.UPLOADING, states.ANALYZING),
            (states.PARSING, states.UPLOADING),
            (states.COMPLETED, states.PARSING),
            (states.ERROR, states.UPLOADING),
        ],
    )
    def test_illegal_edges(self, current, target):
        with pytest.raises(InvalidTransitionError):
            check_transition("d", self._status(current), target, 50)

    def test_progress_never_goes_back(self):
        with pytest.raises(InvalidTransitionError):
            check_transition("d", self._status(states.ANALYZING, 75), states.ANALYZING, 50)

    def test_progress_out_of_range(self):
        with pytest.raises(InvalidTransitionError):
            check_transition("d", self._status(states.PENDING), states.UPLOADING, 101)

    def test_reanalysis_starts_a_new_run(self):
        assert check_transition("d", self._status(states.COMPLETED, 100), states.ANALYZING, 50) == 50

    def test_terminal_states_reject_everything_else(self):
        with pytest.raises(InvalidTransitionError):
            check_transition("d", self._status(states.COMPLETED, 100), states.COMPLETED, 100)
        with pytest.raises(InvalidTransitionError):
            check_transition("d", self._status(states.COMPLETED, 100), states.ERROR, 0)

    def test_error_keeps_reached_progress(self):
        assert check_transition("d", self._status(states.PARSING, 30), states.ERROR, 0) == 30


class TestAdvance:
    @pytest.mark.asyncio
    async def test_full_run(self, db, make_document):
        document = await make_document()
        for state, progress in [
            (states.UPLOADING, 10),
            (states.PARSING, 30),
            (states.ANALYZING, 50),
            (states.ANALYZING, 75),
            (states.COMPLETED, 100),
        ]:
            status = await states.advance(db, document.id, state, progress, f"{state} {progress}")
            assert (status.state, status.progress) == (state, progress)

        current = await states.get_status(db, document.id)
        assert current.is_terminal
        assert current.message == "completed 100"

    @pytest.mark.asyncio
    async def test_same_state_and_progress_is_a_no_op(self, db, make_document):
        document = await make_document(status=states.PARSING, progress=30)
        status = await states.advance(db, document.id, states.PARSING, 30, "again")
        assert status.progress == 30
        assert (await states.get_status(db, document.id)).message != "again"

    @pytest.mark.asyncio
    async def test_error_records_message_and_is_idempotent(self, db, make_document):
        document = await make_document(status=states.ANALYZING, progress=75)
        status = await states.advance(db, document.id, states.ERROR, 0, "Error processing resume", error="boom")
        assert status.state == states.ERROR
        assert status.progress == 75
        assert status.error == "boom"

        again = await states.advance(db, document.id, states.ERROR, 0, "Error processing resume", error="again")
        assert again.error == "boom"

    @pytest.mark.asyncio
    async def test_illegal_transition_leaves_row_untouched(self, db, make_document):
        document = await make_document()
        with pytest.raises(InvalidTransitionError):
            await states.advance(db, document.id, states.COMPLETED, 100, "done")
        assert (await states.get_status(db, document.id)).state == states.PENDING

    @pytest.mark.asyncio
    async def test_unknown_document(self, db):
        with pytest.raises(DocumentNotFoundError):
            await states.advance(db, "missing", states.UPLOADING, 10, "Uploading")
