"""Tests for the Q (reward-to-go) and GAE judgers."""

import pytest
import torch

from tapepg.pg.judgers import GAEJudger, QJudger, normalize_tape
from tapepg.rollouts import RolloutSet
from tapepg.tape import Batch, map_tapes, tape_from_batches, to_padded
from tests.helpers import lane_values, reward_tape, softmax_rollouts


def _constant_critic(value: float):
    def value_func(inputs):
        return map_tapes(lambda n, x: torch.full((n,), value), inputs)

    return value_func


def _scalar_inputs_critic():
    """V(s) = s for scalar observations."""

    def value_func(inputs):
        return map_tapes(lambda n, x: x.reshape(n), inputs)

    return value_func


def _rollouts_with_inputs(lane_rewards, lane_inputs):
    rewards = reward_tape(lane_rewards)
    inputs = reward_tape(lane_inputs)
    return RolloutSet(inputs=inputs, actions=rewards, agent_outs=rewards, rewards=rewards)


class TestQJudger:
    def test_zero_discount_means_undiscounted(self, ragged_rollouts):
        judged = QJudger(discount=0.0).judge_actions(ragged_rollouts)
        assert lane_values(judged) == [[3.5, 2.5, 2.0], [3.0], [0.0, 1.0]]

    def test_discounted(self):
        rollouts = softmax_rollouts([[1.0, 1.0]])
        (lane,) = lane_values(QJudger(discount=0.5).judge_actions(rollouts))
        assert lane == pytest.approx([1.5, 1.0])

    def test_normalized(self, ragged_rollouts):
        judged = QJudger(normalize=True).judge_actions(ragged_rollouts)
        values, mask = to_padded(judged)
        present = values[mask]
        assert present.mean().item() == pytest.approx(0.0, abs=1e-6)
        assert present.std(correction=0).item() == pytest.approx(1.0, abs=1e-4)


class TestNormalizeTape:
    def test_constant_values_stay_finite(self):
        judged = normalize_tape(reward_tape([[2.0, 2.0], [2.0]]))
        assert lane_values(judged) == [[0.0, 0.0], [0.0]]

    def test_empty_tape_is_returned(self):
        empty = tape_from_batches([])
        assert normalize_tape(empty) is empty


class TestGAEJudger:
    """GAE recursion boundary behaviour."""

    def test_lambda_zero_is_td_residual(self):
        rollouts = _rollouts_with_inputs([[1.0, 2.0, 3.0]], [[0.5, 1.0, 1.5]])
        judger = GAEJudger(value_func=_scalar_inputs_critic(), discount=0.9, lam=0.0)
        (lane,) = lane_values(judger.judge_actions(rollouts))
        expected = [
            1.0 + 0.9 * 1.0 - 0.5,
            2.0 + 0.9 * 1.5 - 1.0,
            3.0 - 1.5,  # V after the last step is 0
        ]
        assert lane == pytest.approx(expected)

    def test_lambda_one_is_return_minus_baseline(self):
        rollouts = softmax_rollouts([[1.0, 2.0, 3.0], [4.0]])
        judger = GAEJudger(value_func=_constant_critic(0.25), discount=0.5, lam=1.0)
        judged = lane_values(judger.judge_actions(rollouts))
        returns = lane_values(QJudger(discount=0.5).judge_actions(rollouts))
        for got, ret in zip(judged, returns):
            assert got == pytest.approx([r - 0.25 for r in ret])

    def test_zero_critic_lambda_one_matches_q_judger(self, ragged_rollouts):
        gae = GAEJudger(value_func=_constant_critic(0.0), discount=0.9, lam=1.0)
        q = QJudger(discount=0.9)
        for got, want in zip(lane_values(gae.judge_actions(ragged_rollouts)), lane_values(q.judge_actions(ragged_rollouts))):
            assert got == pytest.approx(want)

    def test_lanes_are_independent(self):
        # A long lane next to a short one must not change the short lane's advantage
        alone = _rollouts_with_inputs([[1.0]], [[0.3]])
        mixed = _rollouts_with_inputs([[5.0, 5.0, 5.0], [1.0]], [[1.0, 1.0, 1.0], [0.3]])
        judger = GAEJudger(value_func=_scalar_inputs_critic(), discount=0.99, lam=0.95)
        assert lane_values(judger.judge_actions(mixed))[1] == pytest.approx(lane_values(judger.judge_actions(alone))[0])

    def test_critic_with_column_output(self):
        def value_func(inputs):
            return map_tapes(lambda n, x: torch.zeros(n, 1), inputs)

        rollouts = softmax_rollouts([[1.0, 1.0]])
        judged = GAEJudger(value_func=value_func, discount=1.0, lam=1.0).judge_actions(rollouts)
        assert lane_values(judged) == [[2.0, 1.0]]

    def test_values_are_not_differentiated(self):
        weight = torch.tensor(1.0, requires_grad=True)

        def value_func(inputs):
            return map_tapes(lambda n, x: x.reshape(n) * weight, inputs)

        rollouts = _rollouts_with_inputs([[1.0, 2.0]], [[0.5, 1.0]])
        judged = GAEJudger(value_func=value_func).judge_actions(rollouts)
        assert all(not batch.packed.requires_grad for batch in judged.read_tape())

    def test_empty_rollouts(self):
        empty = tape_from_batches([])
        rollouts = RolloutSet(inputs=empty, actions=empty, agent_outs=empty, rewards=empty)
        judged = GAEJudger(value_func=_constant_critic(0.0)).judge_actions(rollouts)
        assert len(judged) == 0

    def test_presence_matches_rewards(self, ragged_rollouts):
        judged = GAEJudger(value_func=_constant_critic(1.0)).judge_actions(ragged_rollouts)
        for got, want in zip(judged.read_tape(), ragged_rollouts.rewards.read_tape(), strict=True):
            assert torch.equal(got.present, want.present)
            assert isinstance(got, Batch)
