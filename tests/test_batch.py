import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from cakeday.batch import BatchPlanner
from cakeday.caldav_client import AuthorizationRevoked
from cakeday.models import OPERATION_INSERT_EVENT, OPERATION_INSERT_REMINDER, Occurrence


def _occurrence(index: int, reminders: list[int]) -> Occurrence:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=index)
    return Occurrence(
        start=start,
        end=start + timedelta(days=1),
        title=f"Contact {index}'s birthday",
        lookup_key=f"contact-{index}",
        reminder_minutes=list(reminders),
    )


class RecordingStore:
    def __init__(self, results: list[bool] | None = None) -> None:
        self.chunks = []
        self._results = list(results or [])

    def apply(self, chunk) -> bool:
        self.chunks.append(list(chunk))
        if self._results:
            return self._results.pop(0)
        return True


class BatchPlannerTests(unittest.TestCase):
    def test_chunks_flush_once_limit_is_exceeded(self) -> None:
        store = RecordingStore()
        planner = BatchPlanner(store.apply, "cal-1")
        stats = planner.plan(_occurrence(i, [1440]) for i in range(205))

        self.assertEqual([len(chunk) for chunk in store.chunks], [202, 202, 6])
        self.assertEqual(stats.events_applied, 205)
        self.assertEqual(stats.reminders_applied, 205)
        self.assertEqual(stats.chunks_applied, 3)
        self.assertEqual(stats.chunks_failed, 0)

    def test_back_references_restart_in_each_chunk(self) -> None:
        store = RecordingStore()
        planner = BatchPlanner(store.apply, "cal-1")
        planner.plan(_occurrence(i, [1440]) for i in range(205))

        second = store.chunks[1]
        self.assertEqual(second[0].kind, OPERATION_INSERT_EVENT)
        refs = [op.back_reference for op in second if op.kind == OPERATION_INSERT_REMINDER]
        self.assertEqual(refs[:4], [0, 2, 4, 6])
        for op in second:
            if op.kind == OPERATION_INSERT_REMINDER:
                self.assertEqual(second[op.back_reference].kind, OPERATION_INSERT_EVENT)

    def test_back_references_skip_over_reminders(self) -> None:
        store = RecordingStore()
        planner = BatchPlanner(store.apply, "cal-1")
        planner.plan([_occurrence(0, [1440, 60]), _occurrence(1, [30])])

        chunk = store.chunks[0]
        self.assertEqual(
            [(op.kind, op.back_reference) for op in chunk],
            [
                (OPERATION_INSERT_EVENT, None),
                (OPERATION_INSERT_REMINDER, 0),
                (OPERATION_INSERT_REMINDER, 0),
                (OPERATION_INSERT_EVENT, None),
                (OPERATION_INSERT_REMINDER, 3),
            ],
        )
        self.assertEqual([op.minutes for op in chunk if op.minutes is not None], [1440, 60, 30])
        self.assertTrue(all(op.calendar_id == "cal-1" for op in chunk if op.kind == OPERATION_INSERT_EVENT))

    def test_failed_chunk_is_dropped_and_later_chunks_still_apply(self) -> None:
        store = RecordingStore(results=[False, True, True])
        on_failed = mock.Mock()
        planner = BatchPlanner(store.apply, "cal-1", on_chunk_failed=on_failed)
        stats = planner.plan(_occurrence(i, [1440]) for i in range(205))

        self.assertEqual(len(store.chunks), 3)
        self.assertEqual(stats.chunks_failed, 1)
        self.assertEqual(stats.operations_dropped, 202)
        self.assertEqual(stats.events_applied, 104)
        on_failed.assert_called_once()
        self.assertEqual(len(on_failed.call_args.args[0]), 202)
        # The failed chunk is not resubmitted and numbering restarts after it.
        self.assertEqual(store.chunks[1][1].back_reference, 0)
        self.assertEqual(store.chunks[1][0].occurrence.lookup_key, "contact-101")

    def test_chunk_that_raises_is_dropped_and_later_chunks_still_apply(self) -> None:
        chunks = []

        def apply(chunk) -> bool:
            chunks.append(list(chunk))
            if len(chunks) == 1:
                raise ConnectionError("connection reset")
            return True

        on_failed = mock.Mock()
        planner = BatchPlanner(apply, "cal-1", on_chunk_failed=on_failed)
        stats = planner.plan(_occurrence(i, [1440]) for i in range(205))

        self.assertEqual([len(chunk) for chunk in chunks], [202, 202, 6])
        self.assertEqual(stats.chunks_failed, 1)
        self.assertEqual(stats.chunks_applied, 2)
        self.assertEqual(stats.events_applied, 104)
        on_failed.assert_called_once()

    def test_revoked_access_stops_planning(self) -> None:
        apply = mock.Mock(side_effect=AuthorizationRevoked("denied"))
        planner = BatchPlanner(apply, "cal-1")
        with self.assertRaises(AuthorizationRevoked):
            planner.plan(_occurrence(i, [1440]) for i in range(205))
        apply.assert_called_once()

    def test_small_plan_flushes_once_at_end(self) -> None:
        store = RecordingStore()
        planner = BatchPlanner(store.apply, "cal-1")
        planner.add(_occurrence(0, []))
        self.assertEqual(len(planner.pending), 1)
        self.assertEqual(store.chunks, [])
        planner.plan([])
        self.assertEqual(len(store.chunks), 1)
        self.assertEqual(planner.pending, [])

    def test_flush_with_nothing_pending_does_not_apply(self) -> None:
        apply = mock.Mock(return_value=True)
        planner = BatchPlanner(apply, "cal-1")
        self.assertTrue(planner.flush())
        apply.assert_not_called()


if __name__ == "__main__":
    unittest.main()
