"""
Tests for sequence criteria, the criterion factory and checkpoints.

Tests cover:
- CriterionFactory creation, registration and error handling
- ForceAlignmentCriterion and AutoSegmentationCriterion losses
- Batched loss with padded targets
- Teacher-forced scores, Viterbi and beam paths, alignment maps
- Scale mode overrides
- Checkpoint save/load round trip and failure modes
"""

import pytest
import torch

from src.decoding.forced_alignment import AlignmentError
from src.decoding.scaling import CriterionScaleMode
from src.models.base_criterion import SequenceCriterion
from src.models.checkpoint import load_checkpoint, save_checkpoint
from src.models.criteria import AutoSegmentationCriterion, ForceAlignmentCriterion
from src.models.criterion_factory import CriterionFactory
from src.utils.config import ConfigurationError


@pytest.fixture
def emissions():
    """Log-probability emissions for one utterance (T=6, V=4)."""
    generator = torch.Generator().manual_seed(3)
    return torch.log_softmax(torch.randn(6, 4, generator=generator, dtype=torch.float64), dim=-1)


@pytest.fixture
def transitions():
    generator = torch.Generator().manual_seed(4)
    return 0.1 * torch.randn(4, 4, generator=generator, dtype=torch.float64)


class TestCriterionFactory:
    """Test criterion creation from descriptions."""

    def test_create_force_alignment(self):
        """Test the 'fac' name creates a ForceAlignmentCriterion."""
        criterion = CriterionFactory.create_criterion({'name': 'fac', 'num_labels': 5})

        assert isinstance(criterion, ForceAlignmentCriterion)
        assert criterion.num_labels == 5
        assert criterion.scale_mode is CriterionScaleMode.NONE

    def test_create_auto_segmentation_case_insensitive(self):
        """Test names are matched case-insensitively and scale modes are parsed."""
        criterion = CriterionFactory.create_criterion(
            {'name': 'ASG', 'num_labels': 5, 'scale_mode': 'TARGET_SZ'}
        )

        assert isinstance(criterion, AutoSegmentationCriterion)
        assert criterion.scale_mode is CriterionScaleMode.TARGET_SZ

    def test_unknown_criterion(self):
        """Test unknown names raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Unknown criterion"):
            CriterionFactory.create_criterion({'name': 'ctc', 'num_labels': 5})

    def test_missing_fields(self):
        """Test descriptions without num_labels are rejected."""
        with pytest.raises(ConfigurationError, match="num_labels"):
            CriterionFactory.create_criterion({'name': 'fac'})

    def test_invalid_num_labels(self):
        """Test non-positive label counts are rejected."""
        with pytest.raises(ConfigurationError):
            CriterionFactory.create_criterion({'name': 'fac', 'num_labels': 0})

    def test_list_available_criteria(self):
        """Test the built-in criteria are registered."""
        available = CriterionFactory.list_available_criteria()

        assert 'fac' in available
        assert 'asg' in available

    def test_register_criterion(self):
        """Test a custom criterion can be registered and created."""

        class ZeroCriterion(SequenceCriterion):
            name = 'zero'

            def utterance_loss(self, emissions, target, max_length=None):
                return 0.0

        CriterionFactory.register_criterion('Zero', ZeroCriterion)
        try:
            criterion = CriterionFactory.create_criterion({'name': 'zero', 'num_labels': 3})
            assert isinstance(criterion, ZeroCriterion)
        finally:
            CriterionFactory._CRITERION_REGISTRY.pop('zero', None)

    def test_register_invalid_class(self):
        """Test classes that are not criteria cannot be registered."""
        with pytest.raises(ValueError):
            CriterionFactory.register_criterion('bad', dict)

    def test_to_config_round_trip(self, transitions):
        """Test to_config() recreates an equivalent criterion."""
        criterion = AutoSegmentationCriterion(4, transitions, 'input_sz')

        restored = CriterionFactory.create_criterion(criterion.to_config())

        assert isinstance(restored, AutoSegmentationCriterion)
        assert restored.scale_mode is CriterionScaleMode.INPUT_SZ
        assert torch.equal(restored.transitions, criterion.transitions)


class TestLosses:
    """Test per-utterance and batched losses."""

    def test_force_alignment_loss(self, emissions, transitions):
        """Test the FAC loss is the negative forward score."""
        criterion = ForceAlignmentCriterion(4, transitions)
        target = [1, 2, 2]

        loss = criterion.utterance_loss(emissions, target)

        assert loss == pytest.approx(-criterion.aligner.forward_score(emissions, target))

    def test_auto_segmentation_loss_non_negative(self, emissions, transitions):
        """Test the ASG loss is a non-negative negative log-likelihood."""
        criterion = AutoSegmentationCriterion(4, transitions)

        for target in ([0], [1, 2, 2], [3, 0, 1, 2]):
            assert criterion.utterance_loss(emissions, target) >= -1e-9

    def test_scaled_loss(self, emissions):
        """Test the target-size scale divides the loss by the target length."""
        plain = ForceAlignmentCriterion(4)
        scaled = ForceAlignmentCriterion(4, scale_mode=CriterionScaleMode.TARGET_SZ)
        target = [0, 1, 2]

        assert scaled.utterance_loss(emissions, target) == pytest.approx(
            plain.utterance_loss(emissions, target) / 3
        )

    def test_batched_loss_with_padding(self, emissions):
        """Test padded targets in a batch give the per-utterance losses."""
        criterion = ForceAlignmentCriterion(4)
        batch = torch.stack([emissions, emissions.flip(0)])
        targets = torch.tensor([[1, 2, 3], [0, 3, -1]])

        losses = criterion(batch, targets)

        assert losses.shape == (2,)
        assert losses.dtype == torch.float32
        assert losses[0].item() == pytest.approx(criterion.utterance_loss(emissions, [1, 2, 3]), rel=1e-5)
        assert losses[1].item() == pytest.approx(criterion.utterance_loss(emissions.flip(0), [0, 3]), rel=1e-5)

    def test_batched_loss_with_lengths(self, emissions):
        """Test input lengths limit the frames of each utterance."""
        criterion = ForceAlignmentCriterion(4)
        batch = emissions.unsqueeze(0)

        losses = criterion(batch, torch.tensor([[1, 2]]), input_lengths=torch.tensor([4]))

        assert losses[0].item() == pytest.approx(criterion.utterance_loss(emissions[:4], [1, 2]), rel=1e-5)

    def test_single_utterance_input(self, emissions):
        """Test a (T, V) input is treated as a batch of one."""
        criterion = ForceAlignmentCriterion(4)

        assert criterion(emissions, torch.tensor([1, 2])).shape == (1,)

    def test_unalignable_target(self, emissions):
        """Test a target longer than the input raises AlignmentError."""
        criterion = AutoSegmentationCriterion(4)

        with pytest.raises(AlignmentError):
            criterion.utterance_loss(emissions[:2], [0, 1, 2])


class TestDecodingOperations:
    """Test the decoding operations shared by all criteria."""

    def test_teacher_forced_scores(self):
        """Test teacher-forced scores add the transition from the ground-truth label."""
        emissions = torch.full((4, 3), -5.0, dtype=torch.float64)
        for t, label in enumerate([1, 1, 2, 2]):
            emissions[t, label] = 0.0
        transitions = torch.zeros(3, 3, dtype=torch.float64)
        transitions[1, 0] = 0.25
        criterion = ForceAlignmentCriterion(3, transitions)

        scores = criterion.decoder(emissions, [1, 2])

        assert scores.shape == (4, 3)
        assert scores[0].tolist() == emissions[0].tolist()
        # Frame 2 follows ground-truth label 1
        assert scores[2, 0].item() == pytest.approx(-5.0 + 0.25)
        assert torch.argmax(scores, dim=1).tolist() == [1, 1, 2, 2]

    def test_teacher_forced_single_frame(self):
        """Test a single frame has no previous label to condition on."""
        criterion = ForceAlignmentCriterion(3)
        emissions = torch.tensor([[0.0, 1.0, 0.5]])

        assert criterion.decoder(emissions, [1]).tolist() == [[0.0, 1.0, 0.5]]

    def test_viterbi_and_beam_paths(self, emissions, transitions):
        """Test Viterbi and a wide beam agree on a small problem."""
        criterion = AutoSegmentationCriterion(4, transitions)

        viterbi = criterion.viterbi_path(emissions).tolist()
        beam = criterion.beam_path(emissions, 4 ** 6)

        assert len(viterbi) == 6
        assert beam == viterbi

    def test_beam_path_rejects_bad_size(self, emissions):
        """Test invalid beam sizes raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ForceAlignmentCriterion(4).beam_path(emissions, 0)

    def test_alignment_map(self, emissions):
        """Test the alignment map has one row per frame and one column per target label."""
        criterion = ForceAlignmentCriterion(4)

        attention = criterion.alignment_map(emissions, [0, 1, 2])

        assert attention.shape == (6, 3)
        assert torch.allclose(attention.sum(dim=1), torch.ones(6, dtype=torch.float64))

    def test_with_scale_mode(self, transitions):
        """Test with_scale_mode returns a modified copy."""
        criterion = ForceAlignmentCriterion(4, transitions).eval()

        scaled = criterion.with_scale_mode('max_sz')

        assert scaled is not criterion
        assert isinstance(scaled, ForceAlignmentCriterion)
        assert scaled.scale_mode is CriterionScaleMode.MAX_SZ
        assert criterion.scale_mode is CriterionScaleMode.NONE
        assert scaled.training is False
        assert torch.equal(scaled.transitions, criterion.transitions)

    def test_train_eval_modes(self):
        """Test eval() and train() toggle the training flag."""
        criterion = ForceAlignmentCriterion(4)

        assert criterion.eval().training is False
        assert criterion.train().training is True

    def test_get_info(self):
        """Test criterion metadata."""
        info = AutoSegmentationCriterion(7, scale_mode='target_sz_sqrt').get_info()

        assert info == {'name': 'asg', 'num_labels': 7, 'scale_mode': 'target_sz_sqrt'}


class TestCheckpoint:
    """Test checkpoint persistence."""

    def test_round_trip(self, tmp_path, transitions):
        """Test network, criterion and config survive save and load."""
        network = torch.nn.Linear(8, 4)
        criterion = AutoSegmentationCriterion(4, transitions, 'target_sz')
        path = tmp_path / "ckpt" / "model.pt"

        save_checkpoint(path, network, criterion, config={'decoding': {'beam_size': 4}})
        config, loaded_network, loaded_criterion = load_checkpoint(path)

        assert config == {'decoding': {'beam_size': 4}}
        assert torch.equal(loaded_network.weight, network.weight)
        assert isinstance(loaded_criterion, AutoSegmentationCriterion)
        assert loaded_criterion.scale_mode is CriterionScaleMode.TARGET_SZ
        assert torch.equal(loaded_criterion.transitions, criterion.transitions)

    def test_missing_checkpoint(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_checkpoint(tmp_path / "missing.pt")

    def test_corrupt_checkpoint(self, tmp_path):
        """Test unreadable files raise RuntimeError."""
        path = tmp_path / "corrupt.pt"
        path.write_bytes(b"not a checkpoint")

        with pytest.raises(RuntimeError, match="Checkpoint loading failed"):
            load_checkpoint(path)

    def test_incomplete_checkpoint(self, tmp_path):
        """Test checkpoints without a criterion are rejected."""
        path = tmp_path / "incomplete.pt"
        torch.save({'network': torch.nn.Linear(2, 2)}, path)

        with pytest.raises(RuntimeError, match="criterion"):
            load_checkpoint(path)
