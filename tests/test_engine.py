import random
import unittest
from collections import Counter

from watersort_engine import (
    PALETTE,
    Block,
    IllegalMove,
    InvalidConfiguration,
    Move,
    PuzzleParams,
    apply_move,
    apply_move_fast,
    apply_move_with_info,
    configuration_from_blocks,
    configuration_from_json,
    configuration_to_json,
    deal_configuration,
    is_solved,
    is_valid_move,
    legal_moves,
    pour_amount,
    pour_run_length,
    pretty_print,
    replay_moves,
    total_blocks,
    trace_moves,
    validate_configuration,
)


def make_config(*tubes):
    return tuple(tuple(tube) for tube in tubes)


def color_counts(tubes):
    return Counter(color for tube in tubes for color in tube)


class TestGoalTest(unittest.TestCase):
    def test_empty_and_full_monochrome_tubes_are_solved(self):
        params = PuzzleParams(tube_height=2)
        self.assertTrue(is_solved(params, make_config("RR", "", "BB")))

    def test_mixed_full_tube_is_not_solved(self):
        params = PuzzleParams(tube_height=2)
        self.assertFalse(is_solved(params, make_config("RB", "")))

    def test_partial_monochrome_tube_is_not_solved(self):
        params = PuzzleParams(tube_height=3)
        self.assertFalse(is_solved(params, make_config("RR", "R")))

    def test_mixed_partial_tube_is_not_solved(self):
        params = PuzzleParams(tube_height=4)
        self.assertFalse(is_solved(params, make_config("RB", "")))

    def test_zero_tubes_is_vacuously_solved(self):
        self.assertTrue(is_solved(PuzzleParams(tube_height=3), ()))


class TestMoveValidator(unittest.TestCase):
    def setUp(self):
        self.params = PuzzleParams(tube_height=3)

    def test_same_tube_rejected(self):
        config = make_config("RG", "")
        self.assertFalse(is_valid_move(config, 0, 0, self.params))

    def test_empty_source_rejected(self):
        config = make_config("", "R")
        self.assertFalse(is_valid_move(config, 0, 1, self.params))

    def test_full_destination_rejected(self):
        config = make_config("G", "RGG")
        self.assertFalse(is_valid_move(config, 0, 1, self.params))

    def test_empty_destination_accepted(self):
        config = make_config("RG", "")
        self.assertTrue(is_valid_move(config, 0, 1, self.params))

    def test_matching_top_accepted(self):
        config = make_config("RG", "BG")
        self.assertTrue(is_valid_move(config, 0, 1, self.params))

    def test_different_top_rejected_even_with_free_space(self):
        config = make_config("RB", "R")
        self.assertFalse(is_valid_move(config, 0, 1, self.params))

    def test_out_of_range_index_fails_fast(self):
        config = make_config("R", "")
        with self.assertRaises(InvalidConfiguration):
            is_valid_move(config, 0, 2, self.params)
        with self.assertRaises(InvalidConfiguration):
            is_valid_move(config, -1, 1, self.params)

    def test_legal_moves_order_is_source_then_target(self):
        params = PuzzleParams(tube_height=2)
        config = make_config("R", "R", "")
        self.assertEqual(legal_moves(params, config), [(0, 1), (0, 2), (1, 0), (1, 2)])


class TestPourAmount(unittest.TestCase):
    def test_run_length_counts_top_run_only(self):
        self.assertEqual(pour_run_length(make_config("RGGG"), 0), 3)
        self.assertEqual(pour_run_length(make_config("GRGG"), 0), 2)
        self.assertEqual(pour_run_length(make_config("RG"), 0), 1)
        self.assertEqual(pour_run_length(make_config(""), 0), 0)

    def test_full_run_moves_when_capacity_allows(self):
        params = PuzzleParams(tube_height=3)
        config = make_config("RGG", "")
        self.assertEqual(pour_amount(config, 0, 1, params), 2)
        info = apply_move_with_info(params, config, 0, 1)
        self.assertEqual(info.state, make_config("R", "GG"))
        self.assertEqual(info.move, Move(0, 1, 2))

    def test_partial_pour_caps_at_destination_capacity(self):
        params = PuzzleParams(tube_height=3)
        config = make_config("RGG", "GG")
        self.assertEqual(pour_amount(config, 0, 1, params), 1)
        new_state = apply_move(params, config, 0, 1)
        self.assertEqual(new_state, make_config("RG", "GGG"))

    def test_fast_path_matches_traced_path(self):
        params = PuzzleParams(tube_height=4)
        config = make_config("BRRR", "R", "")
        for source, target in legal_moves(params, config):
            fast_state, amount = apply_move_fast(config, source, target, params.tube_height)
            info = apply_move_with_info(params, config, source, target)
            self.assertEqual(fast_state, info.state)
            self.assertEqual(amount, info.move.amount)


class TestStateTransition(unittest.TestCase):
    def test_transition_conserves_blocks_and_colors(self):
        params, config = deal_configuration(4, 4, empty=2, seed=3)
        rng = random.Random(11)
        state = config
        for _ in range(25):
            moves = legal_moves(params, state)
            if not moves:
                break
            new_state = apply_move(params, state, *rng.choice(moves))
            self.assertEqual(total_blocks(new_state), total_blocks(state))
            self.assertEqual(color_counts(new_state), color_counts(state))
            self.assertTrue(all(len(tube) <= params.tube_height for tube in new_state))
            state = new_state

    def test_input_is_not_mutated(self):
        params = PuzzleParams(tube_height=3)
        tubes = [["R", "G", "G"], []]
        snapshot = [list(tube) for tube in tubes]
        apply_move(params, tubes, 0, 1)
        self.assertEqual(tubes, snapshot)

    def test_illegal_move_raises(self):
        params = PuzzleParams(tube_height=2)
        with self.assertRaises(IllegalMove) as ctx:
            apply_move(params, make_config("RB", "BR", ""), 0, 1)
        self.assertIn("target tube is full", str(ctx.exception))
        with self.assertRaises(IllegalMove) as ctx:
            apply_move(params, make_config("", "R"), 0, 1)
        self.assertIn("source tube is empty", str(ctx.exception))
        with self.assertRaises(IllegalMove) as ctx:
            apply_move(params, make_config("RB", "R"), 0, 1)
        self.assertIn("top colors differ", str(ctx.exception))

    def test_move_info_reports_solved(self):
        params = PuzzleParams(tube_height=2)
        info = apply_move_with_info(params, make_config("RR", "B", "B"), 1, 2)
        self.assertTrue(info.solved)

    def test_replay_and_trace_agree(self):
        params = PuzzleParams(tube_height=2)
        config = make_config("RB", "BR", "")
        moves = [(0, 2), (1, 0), (1, 2)]
        final = replay_moves(params, config, moves)
        trace = trace_moves(params, config, moves)
        self.assertEqual(trace[-1].state, final)
        self.assertEqual([info.move.amount for info in trace], [1, 1, 1])
        self.assertTrue(is_solved(params, final))


class TestConfiguration(unittest.TestCase):
    def test_hidden_flag_is_ignored(self):
        self.assertEqual(Block("R", hidden=True), Block("R"))
        config = configuration_from_blocks(
            [[Block("R", hidden=True), {"color": "B", "hidden": True}], [], ["G"]]
        )
        self.assertEqual(config, make_config("RB", "", "G"))

    def test_block_mapping_without_color_rejected(self):
        with self.assertRaises(InvalidConfiguration):
            configuration_from_blocks([[{"hidden": True}]])

    def test_validate_rejects_bad_height(self):
        for height in (0, -2):
            with self.assertRaises(InvalidConfiguration):
                validate_configuration(PuzzleParams(tube_height=height), [])

    def test_validate_rejects_overfilled_tube(self):
        with self.assertRaises(InvalidConfiguration):
            validate_configuration(PuzzleParams(tube_height=2), [["R", "R", "R"]])

    def test_validate_rejects_tube_count_mismatch(self):
        with self.assertRaises(InvalidConfiguration):
            validate_configuration(PuzzleParams(tube_height=2, tube_count=3), [["R", "R"], []])

    def test_validate_rejects_unhashable_colors(self):
        params = PuzzleParams(tube_height=2)
        with self.assertRaises(InvalidConfiguration) as ctx:
            validate_configuration(params, [[[1], [1]], []])
        self.assertIn("unhashable color", str(ctx.exception))
        with self.assertRaises(InvalidConfiguration):
            validate_configuration(params, [[{"color": [1]}], []])

    def test_bool_is_not_an_integer(self):
        with self.assertRaises(InvalidConfiguration):
            validate_configuration(PuzzleParams(tube_height=True), [["R"]])
        config = make_config("R", "")
        with self.assertRaises(InvalidConfiguration):
            is_valid_move(config, True, 0, PuzzleParams(tube_height=2))
        with self.assertRaises(InvalidConfiguration):
            pour_run_length(config, False)

    def test_invalid_configuration_is_value_error(self):
        self.assertTrue(issubclass(InvalidConfiguration, ValueError))
        self.assertTrue(issubclass(IllegalMove, ValueError))

    def test_json_round_trip(self):
        config = make_config("RB", "", "G")
        self.assertEqual(configuration_from_json(configuration_to_json(config)), config)

    def test_malformed_json_rejected(self):
        with self.assertRaises(InvalidConfiguration):
            configuration_from_json("[[")
        with self.assertRaises(InvalidConfiguration):
            configuration_from_json('{"a": 1}')

    def test_deal_is_seeded_and_balanced(self):
        params, config = deal_configuration(5, 4, empty=2, seed=42)
        _, again = deal_configuration(5, 4, empty=2, seed=42)
        self.assertEqual(config, again)
        self.assertEqual(params, PuzzleParams(tube_height=4, tube_count=7))
        self.assertEqual(config[-2:], ((), ()))
        self.assertTrue(all(len(tube) == 4 for tube in config[:5]))
        self.assertEqual(color_counts(config), Counter({color: 4 for color in PALETTE[:5]}))

    def test_deal_rejects_too_many_colors(self):
        with self.assertRaises(ValueError):
            deal_configuration(len(PALETTE) + 1, 4)

    def test_pretty_print_columns(self):
        params = PuzzleParams(tube_height=2)
        text = pretty_print(params, make_config("RB", ""))
        self.assertEqual(text.splitlines(), ["B", "R", "-  -", "1  2"])


if __name__ == "__main__":
    unittest.main()
