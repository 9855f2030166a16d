# File: varflow/tools.py
# Location: varflow/varflow/tools.py

"""
External tool collaborator.

``ToolRunner.execute(task_kind, inputs, params, workdir)`` is the single entry
point the pipeline uses to run an external program. Each task kind has a
command builder that turns input artifacts and parameters into one or more
command lines and the list of artifacts they produce. The runner executes the
commands in order and returns the produced paths; a non-zero exit raises
``subprocess.CalledProcessError``, a timeout ``subprocess.TimeoutExpired``.
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .utils import check_external_tools, run_command
from .dataflow.error_handling import ToolNotFoundError

logger = logging.getLogger("varflow")

DEFAULT_TOOLS = {
    "gatk": "gatk",
    "bwa": "bwa",
    "samtools": "samtools",
    "freebayes": "freebayes",
}


@dataclass
class Invocation:
    """One command line; stdout is redirected to ``stdout`` if given."""

    cmd: List[str]
    stdout: Optional[Path] = None

    def __post_init__(self):
        self.cmd = [str(c) for c in self.cmd]


@dataclass
class ToolPlan:
    """Commands to run, in order, and the artifacts they produce."""

    invocations: List[Invocation]
    outputs: List[Path] = field(default_factory=list)


Builder = Callable[["ToolRunner", Sequence[Path], Dict[str, Any], Path], ToolPlan]
_BUILDERS: Dict[str, Builder] = {}


def command_builder(task_kind: str) -> Callable[[Builder], Builder]:
    """Register a command builder for a task kind."""

    def decorator(func: Builder) -> Builder:
        _BUILDERS[task_kind] = func
        return func

    return decorator


class ToolRunner:
    """Runs external tools for the pipeline's task kinds.

    Attributes
    ----------
    tools : Dict[str, str]
        Tool name to executable path
    java_options : str
        Options passed to GATK's JVM
    timeout : float or None
        Per-command timeout in seconds
    """

    def __init__(
        self,
        tools: Optional[Dict[str, str]] = None,
        java_options: str = "",
        timeout: Optional[float] = None,
    ):
        self.tools = {**DEFAULT_TOOLS, **(tools or {})}
        self.java_options = java_options
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "ToolRunner":
        """Build a runner from the merged configuration."""
        return cls(
            tools=cfg.get("tools"),
            java_options=cfg.get("java_options", ""),
            timeout=cfg.get("task_timeout"),
        )

    def check_tools(self) -> None:
        """Raise ToolNotFoundError for the first configured tool missing from PATH."""
        missing = check_external_tools(list(self.tools.values()))
        if missing:
            raise ToolNotFoundError(missing[0])

    def gatk(self, tool: str) -> List[str]:
        """Command prefix for a GATK/Picard tool."""
        cmd = [self.tools["gatk"]]
        if self.java_options:
            cmd += ["--java-options", self.java_options]
        return cmd + [tool]

    def plan(
        self, task_kind: str, inputs: Sequence[Path], params: Dict[str, Any], workdir: Path
    ) -> ToolPlan:
        """Build the commands for a task without running them.

        Raises
        ------
        KeyError
            If the task kind is unknown
        """
        if task_kind not in _BUILDERS:
            raise KeyError(f"Unknown task kind '{task_kind}'")
        return _BUILDERS[task_kind](self, [Path(p) for p in inputs], params, Path(workdir))

    def execute(
        self, task_kind: str, inputs: Sequence[Path], params: Dict[str, Any], workdir: Path
    ) -> List[Path]:
        """Run the external tool(s) for a task and return the produced artifacts."""
        plan = self.plan(task_kind, inputs, params, workdir)
        Path(workdir).mkdir(parents=True, exist_ok=True)
        for invocation in plan.invocations:
            logger.debug(f"[{task_kind}] {shlex.join(invocation.cmd)}")
            run_command(invocation.cmd, output_file=invocation.stdout, timeout=self.timeout)
        return plan.outputs

    @staticmethod
    def task_kinds() -> List[str]:
        """Registered task kinds."""
        return sorted(_BUILDERS)


@command_builder("fastq_to_sam")
def _fastq_to_sam(runner, inputs, params, workdir):
    left, right = inputs
    read_group = params["read_group"]
    out = workdir / f"{read_group}.unmapped.bam"
    cmd = runner.gatk("FastqToSam") + [
        "--FASTQ", left,
        "--FASTQ2", right,
        "--OUTPUT", out,
        "--READ_GROUP_NAME", read_group,
        "--SAMPLE_NAME", params["sample"],
        "--LIBRARY_NAME", params.get("library", params["sample"]),
        "--PLATFORM_UNIT", read_group,
        "--PLATFORM", params.get("platform", "illumina"),
    ]
    return ToolPlan([Invocation(cmd)], [out])


@command_builder("mark_adapters")
def _mark_adapters(runner, inputs, params, workdir):
    (bam,) = inputs
    name = params["read_group"]
    out = workdir / f"{name}.marked.bam"
    metrics = workdir / f"{name}.adapter_metrics.txt"
    cmd = runner.gatk("MarkIlluminaAdapters") + [
        "--INPUT", bam,
        "--OUTPUT", out,
        "--METRICS", metrics,
    ]
    return ToolPlan([Invocation(cmd)], [out, metrics])


@command_builder("sam_to_fastq")
def _sam_to_fastq(runner, inputs, params, workdir):
    (bam,) = inputs
    out = workdir / f"{params['read_group']}.interleaved.fq"
    cmd = runner.gatk("SamToFastq") + [
        "--INPUT", bam,
        "--FASTQ", out,
        "--CLIPPING_ATTRIBUTE", "XT",
        "--CLIPPING_ACTION", "2",
        "--INTERLEAVE", "true",
        "--INCLUDE_NON_PF_READS", "true",
    ]
    return ToolPlan([Invocation(cmd)], [out])


@command_builder("index_genome")
def _index_genome(runner, inputs, params, workdir):
    (fasta,) = inputs
    fai = Path(f"{fasta}.fai")
    dictionary = fasta.with_suffix(".dict")
    prefix = workdir / fasta.stem
    return ToolPlan(
        [
            Invocation([runner.tools["samtools"], "faidx", fasta]),
            Invocation(
                runner.gatk("CreateSequenceDictionary") + ["-R", fasta, "-O", dictionary]
            ),
            Invocation([runner.tools["bwa"], "index", "-p", prefix, fasta]),
        ],
        [fasta, fai, dictionary, prefix],
    )


@command_builder("bwa_mem")
def _bwa_mem(runner, inputs, params, workdir):
    fastq, prefix = inputs
    out = workdir / f"{params['read_group']}.aligned.sam"
    cmd = [
        runner.tools["bwa"], "mem",
        "-M",
        "-t", str(params.get("threads", 1)),
        "-p", prefix,
        fastq,
    ]
    return ToolPlan([Invocation(cmd, stdout=out)], [out])


@command_builder("merge_bam_alignment")
def _merge_bam_alignment(runner, inputs, params, workdir):
    aligned, unmapped, fasta = inputs
    out = workdir / f"{params['read_group']}.merged.bam"
    cmd = runner.gatk("MergeBamAlignment") + [
        "-R", fasta,
        "--ALIGNED_BAM", aligned,
        "--UNMAPPED_BAM", unmapped,
        "--OUTPUT", out,
        "--CREATE_INDEX", "true",
        "--ADD_MATE_CIGAR", "true",
        "--CLIP_ADAPTERS", "false",
        "--CLIP_OVERLAPPING_READS", "true",
        "--INCLUDE_SECONDARY_ALIGNMENTS", "true",
        "--MAX_INSERTIONS_OR_DELETIONS", "-1",
        "--PRIMARY_ALIGNMENT_STRATEGY", "MostDistant",
        "--ATTRIBUTES_TO_RETAIN", "XS",
        "--SORT_ORDER", "coordinate",
    ]
    return ToolPlan([Invocation(cmd)], [out])


@command_builder("merge_sample_bams")
def _merge_sample_bams(runner, inputs, params, workdir):
    out = workdir / f"{params['sample']}.bam"
    bai = Path(f"{out}.bai")
    samtools = runner.tools["samtools"]
    return ToolPlan(
        [
            Invocation(
                [samtools, "merge", "-f", "-@", str(params.get("threads", 1)), out, *inputs]
            ),
            Invocation([samtools, "index", out]),
        ],
        [out, bai],
    )


@command_builder("call_window")
def _call_window(runner, inputs, params, workdir):
    fasta, *bams = inputs
    region = params["region"]
    safe = region.replace(":", "_").replace("-", "_")
    out = workdir / f"{safe}.vcf"
    cmd = [runner.tools["freebayes"], "-f", fasta, "-r", region]
    for bam in bams:
        cmd += ["-b", bam]
    return ToolPlan([Invocation(cmd, stdout=out)], [out])


@command_builder("select_snps")
def _select_snps(runner, inputs, params, workdir):
    vcf, fasta = inputs
    out = workdir / f"{params['name']}.snps.vcf"
    cmd = runner.gatk("SelectVariants") + [
        "-R", fasta,
        "-V", vcf,
        "--select-type-to-include", "SNP",
        "-O", out,
    ]
    return ToolPlan([Invocation(cmd)], [out])


@command_builder("sort_vcf")
def _sort_vcf(runner, inputs, params, workdir):
    vcf, dictionary = inputs
    out = workdir / f"{params['name']}.snps.sorted.vcf"
    cmd = runner.gatk("SortVcf") + [
        "--INPUT", vcf,
        "--OUTPUT", out,
        "--SEQUENCE_DICTIONARY", dictionary,
    ]
    return ToolPlan([Invocation(cmd)], [out])


@command_builder("filter_variants")
def _filter_variants(runner, inputs, params, workdir):
    vcf, fasta = inputs
    out = workdir / f"{params['name']}.filtered.vcf"
    cmd = runner.gatk("VariantFiltration") + [
        "-R", fasta,
        "-V", vcf,
        "-O", out,
        "--filter-name", "DPFilter",
        "--filter-expression", f"DP > {params['dp_threshold']}",
    ]
    return ToolPlan([Invocation(cmd)], [out])


@command_builder("select_passing")
def _select_passing(runner, inputs, params, workdir):
    vcf, fasta = inputs
    out = workdir / f"{params['name']}.pass.vcf"
    cmd = runner.gatk("SelectVariants") + [
        "-R", fasta,
        "-V", vcf,
        "--exclude-filtered",
        "-O", out,
    ]
    return ToolPlan([Invocation(cmd)], [out])
