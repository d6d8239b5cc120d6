"""
Unit tests for natural-key grouping of Events.
"""

import unittest

from eventrecon.grouping import find_duplicate_groups, find_stale_identifiers, index_by_natural_key, targets_from_snapshot
from eventrecon.identity import generate_event_id
from eventrecon.model import Event


def ev(record_id: str, event_id: str, school: str, date: str, category: str = "Minimusiker") -> Event:
    return Event(record_id=record_id, event_id=event_id, school_name=school, event_date=date, event_type=category)


class TestGrouping(unittest.TestCase):
    def test_groups_same_school_and_date_across_categories(self) -> None:
        events = [
            ev("rec1", "evt_a", "Lindenschule", "2026-03-10", "Concert"),
            ev("rec2", "evt_b", "Lindenschule", "2026-03-10T00:00:00.000Z", "Minimusiker"),
            ev("rec3", "evt_c", "Lindenschule", "2026-03-11"),
        ]

        groups = find_duplicate_groups(events)

        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].natural_key, ("Lindenschule", "2026-03-10"))
        self.assertEqual([m.record_id for m in groups[0].members], ["rec1", "rec2"])
        self.assertEqual(groups[0].canonical_id, generate_event_id("Lindenschule", "minimusiker", "2026-03-10"))

    def test_matching_is_exact(self) -> None:
        events = [
            ev("rec1", "evt_a", "Lindenschule", "2026-03-10"),
            ev("rec2", "evt_b", "Lindenschule Nord", "2026-03-10"),
        ]
        self.assertEqual(find_duplicate_groups(events), [])

    def test_events_without_key_are_ignored(self) -> None:
        events = [
            ev("rec1", "evt_a", "", "2026-03-10"),
            ev("rec2", "evt_b", "", "2026-03-10"),
            ev("rec3", "evt_c", "Lindenschule", ""),
        ]
        self.assertEqual(index_by_natural_key(events), {})
        self.assertEqual(find_duplicate_groups(events), [])

    def test_same_id_twice_is_still_a_group(self) -> None:
        events = [
            ev("rec1", "evt_same", "Lindenschule", "2026-03-10"),
            ev("rec2", "evt_same", "Lindenschule", "2026-03-10"),
        ]
        groups = find_duplicate_groups(events)
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].distinct_ids, ["evt_same"])

    def test_canonical_category_follows_majority(self) -> None:
        events = [
            ev("rec1", "evt_a", "Lindenschule", "2026-03-10", "Schulfest"),
            ev("rec2", "evt_b", "Lindenschule", "2026-03-10", "Schulfest"),
            ev("rec3", "evt_c", "Lindenschule", "2026-03-10", "Konzert"),
        ]
        groups = find_duplicate_groups(events)
        self.assertEqual(groups[0].canonical_id, generate_event_id("Lindenschule", "Schulfest", "2026-03-10"))

    def test_snapshot_target_wins_over_member_categories(self) -> None:
        events = [
            ev("rec1", "evt_a", "Bachschule", "2026-04-01", "Concert"),
            ev("rec2", "evt_b", "Bachschule", "2026-04-01", "Schulsong"),
        ]
        snapshot = {"events": [{"event_id": "evt_from_journey", "school_name": "Bachschule", "event_date": "2026-04-01"}]}

        groups = find_duplicate_groups(events, targets_from_snapshot(snapshot))

        self.assertEqual(groups[0].canonical_id, "evt_from_journey")

    def test_targets_from_missing_snapshot(self) -> None:
        self.assertEqual(targets_from_snapshot(None), {})


class TestStaleIdentifiers(unittest.TestCase):
    def test_lone_event_with_other_id_is_stale(self) -> None:
        canonical = generate_event_id("Lindenschule", "Minimusiker", "2026-03-10")
        events = [
            ev("rec1", "evt_lindenschule_minimusikertag_20260310_aa11bb", "Lindenschule", "2026-03-10"),
            ev("rec2", "", "Bachschule", "2026-04-01"),
            ev("rec3", generate_event_id("Eichschule", "Minimusiker", "2026-05-05"), "Eichschule", "2026-05-05"),
        ]

        stale = find_stale_identifiers(events)

        self.assertEqual([g.members[0].record_id for g in stale], ["rec1", "rec2"])
        self.assertEqual(stale[0].canonical_id, canonical)

    def test_groups_are_not_reported_as_stale(self) -> None:
        events = [
            ev("rec1", "evt_a", "Lindenschule", "2026-03-10"),
            ev("rec2", "evt_b", "Lindenschule", "2026-03-10"),
        ]
        self.assertEqual(find_stale_identifiers(events), [])


if __name__ == "__main__":
    unittest.main()
