"""
Evaluation driver for alignment-based sequence models.

This module runs one pass over a dataset and scores three decodings of every
utterance against its reference: the teacher-forced path, the unconstrained
Viterbi path and the beam-search path. Letter (or phoneme) error rates,
an optional word error rate and the average loss are accumulated over the
whole run.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import torch
from tqdm import tqdm

from src.data.dataset import INPUT_KEY, TARGET_KEY
from src.data.dictionary import TokenDictionary
from src.data.transforms import letters_to_string, remap_labels, split_words, tokens_to_letters
from src.decoding.forced_alignment import AlignmentError
from src.decoding.viterbi import collapse_repeats
from src.evaluation.attention import export_attention
from src.evaluation.meters import AverageValueMeter, EditDistanceMeter
from src.models.base_criterion import SequenceCriterion
from src.utils.config import ConfigurationError, EvaluationConfig

logger = logging.getLogger(__name__)


@dataclass
class ErrorSummary:
    """Error rate (percent) and its breakdown for one decoding path."""

    error_rate: float = 0.0
    edits: int = 0
    deletions: int = 0
    insertions: int = 0
    substitutions: int = 0

    @classmethod
    def from_meter(cls, meter: EditDistanceMeter) -> 'ErrorSummary':
        rate, edits, deletions, insertions, substitutions = meter.value()
        return cls(
            error_rate=rate,
            edits=int(edits),
            deletions=int(deletions),
            insertions=int(insertions),
            substitutions=int(substitutions),
        )

    def breakdown(self) -> Tuple[float, int, int, int]:
        """(error_rate, deletions, insertions, substitutions)"""
        return self.error_rate, self.deletions, self.insertions, self.substitutions


@dataclass
class UtteranceReport:
    """Single-utterance diagnostics; the error breakdown is for the Viterbi path."""

    uid: int
    utterance_id: str
    errors: ErrorSummary
    reference: str
    beam_hypothesis: str
    viterbi_hypothesis: str
    teacher_forced_hypothesis: str
    loss: float


@dataclass
class EvaluationResult:
    """
    Aggregate metrics of an evaluation run.

    Attributes:
        metric_name: 'LER' for letter targets, 'PER' for phoneme targets
        beam: Beam-search errors
        viterbi: Viterbi errors
        teacher_forced: Teacher-forced errors
        average_loss: Mean criterion loss over scored utterances
        word_error_rate: Beam-search WER in percent (letter targets only)
        words: Beam-search word error breakdown (letter targets only)
        num_utterances: Utterances scored
        num_skipped: Utterances skipped because their target could not be aligned
        skipped_utterances: Identifiers of the skipped utterances
        utterances: Per-utterance reports when transcripts are viewed
    """

    metric_name: str
    beam: ErrorSummary
    viterbi: ErrorSummary
    teacher_forced: ErrorSummary
    average_loss: float
    word_error_rate: Optional[float] = None
    words: Optional[ErrorSummary] = None
    num_utterances: int = 0
    num_skipped: int = 0
    skipped_utterances: List[str] = field(default_factory=list)
    utterances: List[UtteranceReport] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EvaluationDriver:
    """
    Scores a network and criterion over a dataset.

    Every path goes through the same remapping before scoring: padding is
    dropped, the sequence is cut at the first end-of-sequence token,
    repetition tokens are expanded and the surround token is trimmed.

    Args:
        network: Module mapping a (B, T_in, dims) input batch to (B, T, V) emission scores
        criterion: Criterion providing loss and decoding operations
        dictionary: Token dictionary with V entries
        config: Evaluation options; defaults to EvaluationConfig()
        device: Device for the network forward pass. If None, auto-detects.

    Raises:
        ConfigurationError: If options are invalid or the dictionary size
            doesn't match the criterion

    Example:
        >>> driver = EvaluationDriver(network, criterion, dictionary, EvaluationConfig(beam_size=4))
        >>> result = driver.run(DataLoader(dataset, batch_size=8, collate_fn=EvalDataCollator()))
        >>> print(result.beam.error_rate, result.word_error_rate)
    """

    def __init__(
        self,
        network: torch.nn.Module,
        criterion: SequenceCriterion,
        dictionary: TokenDictionary,
        config: Optional[EvaluationConfig] = None,
        device: Optional[str] = None,
    ):
        self.config = config if config is not None else EvaluationConfig()
        self.config.validate()

        if self.config.scale_mode is not None:
            criterion = criterion.with_scale_mode(self.config.scale_mode)

        if dictionary.index_size() != criterion.num_labels:
            raise ConfigurationError(
                f"Dictionary has {dictionary.index_size()} tokens but the criterion "
                f"expects {criterion.num_labels} labels"
            )

        if device is None:
            if torch.cuda.is_available():
                device = 'cuda'
            elif torch.backends.mps.is_available():
                device = 'mps'
            else:
                device = 'cpu'

        self.network = network
        self.criterion = criterion
        self.dictionary = dictionary
        self.device = device
        self.metric_name = 'LER' if self.config.target == 'ltr' else 'PER'

        self.viterbi_meter = EditDistanceMeter()
        self.beam_meter = EditDistanceMeter()
        self.teacher_forced_meter = EditDistanceMeter()
        self.word_meter = EditDistanceMeter()
        self.single_meter = EditDistanceMeter()
        self.loss_meter = AverageValueMeter()
        self.reset()

    def reset(self) -> None:
        """Clear all accumulated metrics."""
        for meter in (
            self.viterbi_meter,
            self.beam_meter,
            self.teacher_forced_meter,
            self.word_meter,
            self.single_meter,
            self.loss_meter,
        ):
            meter.reset()
        self.num_utterances = 0
        self.skipped_utterances: List[str] = []
        self.reports: List[UtteranceReport] = []

    def run(self, batches: Iterable[Dict[str, Any]]) -> EvaluationResult:
        """
        Evaluate every utterance of every batch.

        Args:
            batches: Iterable of collated batches with 'input' and 'target'
                (see EvalDataCollator), e.g. a DataLoader

        Returns:
            EvaluationResult over the utterances that were scored

        Raises:
            AlignmentError: If an utterance cannot be aligned and
                skip_alignment_errors is disabled
        """
        self.reset()
        self.network.to(self.device)
        self.network.eval()
        self.criterion.eval()

        iterator = tqdm(batches, desc="Evaluating") if self.config.show_progress else batches

        uid = 1
        with torch.no_grad():
            for batch in iterator:
                uid = self.evaluate_batch(batch, uid)

        result = self.result()
        if result.num_skipped:
            logger.warning(f"Skipped {result.num_skipped} utterance(s) that could not be aligned")
        return result

    def evaluate_batch(self, batch: Dict[str, Any], uid: int = 1) -> int:
        """
        Score every utterance of one batch.

        Args:
            batch: Collated batch
            uid: Running number of the batch's first utterance

        Returns:
            Running number for the next batch
        """
        inputs = batch[INPUT_KEY].to(self.device)
        emissions = self.network(inputs).detach().to('cpu', torch.float64)

        if emissions.dim() != 3 or emissions.shape[-1] != self.criterion.num_labels:
            raise ValueError(
                f"Network output must have shape (B, T, {self.criterion.num_labels}), "
                f"got {tuple(emissions.shape)}"
            )

        batch_size, max_frames, _ = emissions.shape
        frame_lengths = self._emission_lengths(batch, inputs.shape[1], max_frames)
        targets = batch[TARGET_KEY].cpu()
        target_lengths = batch.get('target_lengths')
        utterance_ids = batch.get('utterance_id') or [str(uid + b) for b in range(batch_size)]

        for b in range(batch_size):
            target = targets[b]
            if target_lengths is not None:
                target = target[: int(target_lengths[b])]
            target = target[target >= 0]

            try:
                self.evaluate_utterance(
                    emissions[b, : frame_lengths[b]],
                    target,
                    uid=uid,
                    utterance_id=str(utterance_ids[b]),
                    max_length=max_frames,
                )
            except AlignmentError as e:
                if not self.config.skip_alignment_errors:
                    raise
                logger.warning(f"Skipping utterance {utterance_ids[b]}: {e}")
                self.skipped_utterances.append(str(utterance_ids[b]))
            uid += 1

        return uid

    def evaluate_utterance(
        self,
        emissions: torch.Tensor,
        target: torch.Tensor,
        uid: int = 1,
        utterance_id: str = '',
        max_length: Optional[int] = None,
    ) -> Optional[UtteranceReport]:
        """
        Decode and score one utterance.

        All decoding happens before any meter is touched, so an utterance
        that fails to align leaves the running totals unchanged.

        Args:
            emissions: Scores of shape (T, V)
            target: Unpadded raw target labels
            uid: Running utterance number
            utterance_id: Dataset identifier
            max_length: Padded frame count of the batch

        Returns:
            UtteranceReport when view_transcripts is enabled, else None

        Raises:
            AlignmentError: If the target cannot be aligned to the frames
        """
        beam_size = self.config.beam_size

        loss = self.criterion.utterance_loss(emissions, target, max_length=max_length)
        teacher_path = collapse_repeats(torch.argmax(self.criterion.decoder(emissions, target), dim=1))
        viterbi_path = collapse_repeats(self.criterion.viterbi_path(emissions))
        if beam_size > 1:
            beam_path = collapse_repeats(self.criterion.beam_path(emissions, beam_size))
        else:
            beam_path = list(viterbi_path)
        attention = self.criterion.alignment_map(emissions, target) if self.config.attention_dir else None

        reference = self._to_letters(target)
        beam_letters = self._to_letters(beam_path)
        viterbi_letters = self._to_letters(viterbi_path)
        teacher_letters = self._to_letters(teacher_path)

        self.viterbi_meter.add(viterbi_letters, reference)
        self.beam_meter.add(beam_letters, reference)
        self.teacher_forced_meter.add(teacher_letters, reference)
        if self.config.target == 'ltr':
            separator = self.config.word_separator
            self.word_meter.add(split_words(beam_letters, separator), split_words(reference, separator))
        self.loss_meter.add(loss)
        self.num_utterances += 1

        report = None
        if self.config.view_transcripts:
            self.single_meter.reset()
            self.single_meter.add(viterbi_letters, reference)
            report = UtteranceReport(
                uid=uid,
                utterance_id=utterance_id,
                errors=ErrorSummary.from_meter(self.single_meter),
                reference=self._to_string(reference),
                beam_hypothesis=self._to_string(beam_letters),
                viterbi_hypothesis=self._to_string(viterbi_letters),
                teacher_forced_hypothesis=self._to_string(teacher_letters),
                loss=loss,
            )
            self.reports.append(report)
            self._log_report(report)

        if attention is not None:
            export_attention(
                self.config.attention_dir,
                uid,
                viterbi_letters,
                attention,
                utterance_id=utterance_id,
                eos_token=self.config.eos_token,
            )

        return report

    def result(self) -> EvaluationResult:
        """Snapshot of the metrics accumulated so far."""
        is_letter_target = self.config.target == 'ltr'
        words = ErrorSummary.from_meter(self.word_meter) if is_letter_target else None
        return EvaluationResult(
            metric_name=self.metric_name,
            beam=ErrorSummary.from_meter(self.beam_meter),
            viterbi=ErrorSummary.from_meter(self.viterbi_meter),
            teacher_forced=ErrorSummary.from_meter(self.teacher_forced_meter),
            average_loss=self.loss_meter.value()[0],
            word_error_rate=words.error_rate if words is not None else None,
            words=words,
            num_utterances=self.num_utterances,
            num_skipped=len(self.skipped_utterances),
            skipped_utterances=list(self.skipped_utterances),
            utterances=list(self.reports),
        )

    def _to_letters(self, labels: Sequence[int]) -> List[str]:
        remapped = remap_labels(
            labels,
            self.dictionary,
            eos_token=self.config.eos_token,
            replabel=self.config.replabel,
            surround=self.config.surround,
        )
        return tokens_to_letters(remapped, self.dictionary, use_word_piece=self.config.use_word_piece)

    def _to_string(self, letters: Sequence[str]) -> str:
        return letters_to_string(letters, self.config.target)

    @staticmethod
    def _emission_lengths(batch: Dict[str, Any], input_frames: int, output_frames: int) -> List[int]:
        """Valid emission frames per utterance, rescaled when the network changes the frame rate."""
        input_lengths = batch.get('input_lengths')
        batch_size = batch[INPUT_KEY].shape[0]
        if input_lengths is None:
            return [output_frames] * batch_size

        lengths = []
        for length in input_lengths.tolist():
            if input_frames == output_frames:
                scaled = int(length)
            else:
                scaled = math.ceil(length * output_frames / max(input_frames, 1))
            lengths.append(min(max(scaled, 0), output_frames))
        return lengths

    def _log_report(self, report: UtteranceReport) -> None:
        errors = report.errors
        logger.info(
            f"UID: {report.uid}, {self.metric_name}: {errors.error_rate:.2f}, "
            f"DEL: {errors.deletions}, INS: {errors.insertions}, SUB: {errors.substitutions}"
        )
        logger.info(f"REF       {report.reference}")
        logger.info(f"BEAM HYP  {report.beam_hypothesis}")
        logger.info(f"VP HYP    {report.viterbi_hypothesis}")
        logger.info(f"TF HYP    {report.teacher_forced_hypothesis}")
        logger.info("=" * 15)


def log_results(result: EvaluationResult, log: Optional[logging.Logger] = None) -> None:
    """
    Print formatted evaluation results.

    Args:
        result: Aggregate metrics of a run
        log: Logger instance; defaults to this module's logger
    """
    log = log or logger
    name = result.metric_name

    log.info("=" * 80)
    log.info("EVALUATION RESULTS")
    log.info("=" * 80)
    log.info(f"Utterances scored: {result.num_utterances:,}")
    if result.num_skipped:
        log.info(f"Utterances skipped: {result.num_skipped:,} ({', '.join(result.skipped_utterances)})")

    for label, summary in (("Beam Search", result.beam), ("Viterbi", result.viterbi)):
        log.info(
            f"{label} {name}: {summary.error_rate:.2f}, DEL: {summary.deletions}, "
            f"INS: {summary.insertions}, SUB: {summary.substitutions}"
        )
    log.info(f"Teacher Forced {name}: {result.teacher_forced.error_rate:.2f}, Loss: {result.average_loss:.4f}")

    if result.word_error_rate is not None:
        log.info(f"Beam Search WER: {result.word_error_rate:.2f}")

    log.info("=" * 80)
