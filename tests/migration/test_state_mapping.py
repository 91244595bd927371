import unittest

from ado_process_migrator.migration.state_mapping import (
    CATEGORY,
    EXACT,
    FALLBACK,
    StateMap,
    choose_target_state,
    state_map_key,
    visible_states,
)


def state(name, category, order, hidden=False):
    return {"name": name, "stateCategory": category, "order": order, "hidden": hidden}


class TestChooseTargetState(unittest.TestCase):

    def setUp(self):
        self.target_states = [
            state("Done", "Completed", 3),
            state("New", "Proposed", 1),
            state("Doing", "InProgress", 2),
        ]

    def test_exact_name_wins(self):
        chosen, match = choose_target_state(state("Done", "Resolved", 9), self.target_states)
        self.assertEqual(chosen["name"], "Done")
        self.assertEqual(match, EXACT)

    def test_category_match(self):
        chosen, match = choose_target_state(state("Active", "InProgress", 2), self.target_states)
        self.assertEqual(chosen["name"], "Doing")
        self.assertEqual(match, CATEGORY)

    def test_category_match_takes_first_by_order(self):
        targets = self.target_states + [state("Review", "InProgress", 0)]
        chosen, _ = choose_target_state(state("Active", "InProgress", 2), targets)
        self.assertEqual(chosen["name"], "Review")

    def test_fallback_to_first_by_order(self):
        chosen, match = choose_target_state(state("Resolved", "Resolved", 3), self.target_states)
        self.assertEqual(chosen["name"], "New")
        self.assertEqual(match, FALLBACK)

    def test_hidden_states_are_not_candidates(self):
        targets = [state("Active", "InProgress", 1, hidden=True), state("Doing", "InProgress", 2)]
        chosen, match = choose_target_state(state("Active", "InProgress", 1), targets)
        self.assertEqual(chosen["name"], "Doing")
        self.assertEqual(match, CATEGORY)

    def test_no_visible_target_state(self):
        self.assertIsNone(choose_target_state(state("New", "Proposed", 1), [state("New", "Proposed", 1, hidden=True)]))
        self.assertIsNone(choose_target_state(state("New", "Proposed", 1), []))

    def test_visible_states_sorted_by_order(self):
        self.assertEqual([s["name"] for s in visible_states(self.target_states)], ["New", "Doing", "Done"])


class TestStateMap(unittest.TestCase):

    def setUp(self):
        self.state_map = StateMap()
        self.source_states = [
            state("New", "Proposed", 1),
            state("Active", "InProgress", 2),
            state("Resolved", "Resolved", 3),
            state("Closed", "Completed", 4),
        ]
        self.target_states = [
            state("New", "Proposed", 1),
            state("Doing", "InProgress", 2),
            state("Done", "Completed", 3),
        ]

    def test_every_source_state_is_mapped(self):
        self.state_map.map_states("Task", self.source_states, self.target_states)
        self.assertEqual(len(self.state_map), len(self.source_states))
        for source_state in self.source_states:
            self.assertIn(state_map_key("Task", source_state["name"]), self.state_map)

    def test_mapping_result(self):
        self.state_map.map_states("Task", self.source_states, self.target_states)
        self.assertEqual(self.state_map.as_dict(), {
            "Task|New": "New",
            "Task|Active": "Doing",
            "Task|Resolved": "New",
            "Task|Closed": "Done",
        })
        self.assertEqual(self.state_map["Task|Active"], "Doing")
        self.assertEqual(self.state_map.match_kind("Task", "Closed"), CATEGORY)

    def test_fallbacks_are_reported(self):
        notes = self.state_map.map_states("Task", self.source_states, self.target_states)
        self.assertEqual(self.state_map.fallbacks(), ["Task|Resolved"])
        self.assertEqual(len(notes), 1)
        self.assertIn("Task|Resolved", notes[0])

    def test_unmappable_states_are_reported(self):
        notes = self.state_map.map_states("Task", self.source_states, [])
        self.assertEqual(len(self.state_map), 0)
        self.assertEqual(len(notes), 4)

    def test_translate(self):
        self.state_map.set("Bug", "Active", "Doing", CATEGORY)
        self.assertEqual(self.state_map.translate("Bug", "Active"), "Doing")
        # Unmapped values pass through untouched
        self.assertEqual(self.state_map.translate("Bug", "Blocked"), "Blocked")
        self.assertEqual(self.state_map.translate("Task", "Active"), "Active")
        self.assertIsNone(self.state_map.translate("Bug", None))

    def test_maps_are_per_work_item_type(self):
        self.state_map.map_states("Task", self.source_states, self.target_states)
        self.state_map.map_states("Bug", self.source_states, self.source_states)
        self.assertEqual(self.state_map.translate("Task", "Resolved"), "New")
        self.assertEqual(self.state_map.translate("Bug", "Resolved"), "Resolved")


if __name__ == '__main__':
    unittest.main()
