"""Tests for command building and execution of external tools."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from varflow.dataflow import ToolNotFoundError
from varflow.tools import DEFAULT_TOOLS, Invocation, ToolRunner


@pytest.fixture
def runner():
    return ToolRunner(tools={"gatk": "/opt/gatk/gatk"}, java_options="-Xmx4g")


class TestToolRunner:
    """Test runner configuration."""

    def test_tool_overrides(self, runner):
        """Configured paths override the defaults."""
        assert runner.tools["gatk"] == "/opt/gatk/gatk"
        assert runner.tools["bwa"] == DEFAULT_TOOLS["bwa"]

    def test_from_config(self):
        """The runner reads tools, JVM options and timeout from the config."""
        runner = ToolRunner.from_config(
            {"tools": {"freebayes": "/usr/bin/freebayes"}, "java_options": "", "task_timeout": 60}
        )
        assert runner.tools["freebayes"] == "/usr/bin/freebayes"
        assert runner.timeout == 60

    def test_gatk_prefix(self, runner):
        """GATK commands carry the JVM options."""
        assert runner.gatk("SortVcf") == ["/opt/gatk/gatk", "--java-options", "-Xmx4g", "SortVcf"]
        assert ToolRunner().gatk("SortVcf") == ["gatk", "SortVcf"]

    def test_check_tools(self, runner):
        """A missing tool raises ToolNotFoundError."""
        with patch("varflow.tools.check_external_tools", return_value=["freebayes"]):
            with pytest.raises(ToolNotFoundError, match="freebayes"):
                runner.check_tools()
        with patch("varflow.tools.check_external_tools", return_value=[]):
            runner.check_tools()

    def test_unknown_task_kind(self, runner, tmp_path):
        """Planning an unknown task kind fails."""
        with pytest.raises(KeyError):
            runner.plan("nonexistent", [], {}, tmp_path)

    def test_task_kinds(self):
        """Every pipeline stage that calls a tool has a builder."""
        assert set(ToolRunner.task_kinds()) == {
            "fastq_to_sam",
            "mark_adapters",
            "sam_to_fastq",
            "index_genome",
            "bwa_mem",
            "merge_bam_alignment",
            "merge_sample_bams",
            "call_window",
            "select_snps",
            "sort_vcf",
            "filter_variants",
            "select_passing",
        }

    def test_invocation_stringifies(self):
        """Command arguments are converted to strings."""
        assert Invocation(["bwa", Path("x.fq"), 4]).cmd == ["bwa", "x.fq", "4"]


class TestCommandBuilders:
    """Test the command lines of each task kind."""

    def test_fastq_to_sam(self, runner, tmp_path):
        """Read group, sample and output are set."""
        plan = runner.plan(
            "fastq_to_sam",
            ["r_1.fq", "r_2.fq"],
            {"read_group": "S1.2", "sample": "S1"},
            tmp_path,
        )
        (invocation,) = plan.invocations
        cmd = invocation.cmd
        assert cmd[:4] == ["/opt/gatk/gatk", "--java-options", "-Xmx4g", "FastqToSam"]
        assert cmd[cmd.index("--READ_GROUP_NAME") + 1] == "S1.2"
        assert cmd[cmd.index("--SAMPLE_NAME") + 1] == "S1"
        assert plan.outputs == [tmp_path / "S1.2.unmapped.bam"]

    def test_index_genome(self, runner, tmp_path):
        """faidx, sequence dictionary and bwa index run in that order."""
        fasta = tmp_path / "genome.fa"
        plan = runner.plan("index_genome", [fasta], {}, tmp_path)
        assert [inv.cmd[1] for inv in plan.invocations] == ["faidx", "--java-options", "index"]
        assert "CreateSequenceDictionary" in plan.invocations[1].cmd
        assert plan.outputs == [
            fasta,
            tmp_path / "genome.fa.fai",
            tmp_path / "genome.dict",
            tmp_path / "genome",
        ]

    def test_bwa_mem_writes_stdout(self, runner, tmp_path):
        """bwa mem output is captured from stdout."""
        plan = runner.plan(
            "bwa_mem", ["S1.1.fq", "ref/genome"], {"read_group": "S1.1", "threads": 4}, tmp_path
        )
        (invocation,) = plan.invocations
        assert invocation.cmd == ["bwa", "mem", "-M", "-t", "4", "-p", "ref/genome", "S1.1.fq"]
        assert invocation.stdout == tmp_path / "S1.1.aligned.sam"

    def test_merge_sample_bams(self, runner, tmp_path):
        """All lane BAMs are merged and the result indexed."""
        plan = runner.plan("merge_sample_bams", ["a.bam", "b.bam"], {"sample": "S1"}, tmp_path)
        merge, index = plan.invocations
        assert merge.cmd[:2] == ["samtools", "merge"]
        assert merge.cmd[-2:] == ["a.bam", "b.bam"]
        assert index.cmd == ["samtools", "index", str(tmp_path / "S1.bam")]
        assert plan.outputs == [tmp_path / "S1.bam", tmp_path / "S1.bam.bai"]

    def test_call_window(self, runner, tmp_path):
        """The region is passed to the caller together with every BAM."""
        plan = runner.plan(
            "call_window", ["genome.fa", "S1.bam", "S2.bam"], {"region": "chr1:1-100000"}, tmp_path
        )
        (invocation,) = plan.invocations
        assert invocation.cmd == [
            "freebayes", "-f", "genome.fa", "-r", "chr1:1-100000", "-b", "S1.bam", "-b", "S2.bam",
        ]
        assert invocation.stdout == tmp_path / "chr1_1_100000.vcf"

    def test_filter_variants(self, runner, tmp_path):
        """The DP threshold becomes the filter expression."""
        plan = runner.plan(
            "filter_variants", ["x.vcf", "genome.fa"], {"name": "run", "dp_threshold": 60.82}, tmp_path
        )
        cmd = plan.invocations[0].cmd
        assert cmd[cmd.index("--filter-expression") + 1] == "DP > 60.82"
        assert plan.outputs == [tmp_path / "run.filtered.vcf"]

    def test_select_passing(self, runner, tmp_path):
        """Filtered records are excluded."""
        plan = runner.plan("select_passing", ["x.vcf", "genome.fa"], {"name": "run"}, tmp_path)
        assert "--exclude-filtered" in plan.invocations[0].cmd


class TestExecute:
    """Test running planned commands."""

    def test_execute_runs_commands_in_order(self, runner, tmp_path):
        """Each invocation is run; produced paths are returned."""
        workdir = tmp_path / "work"
        with patch("varflow.tools.run_command") as mock_run:
            outputs = runner.execute("merge_sample_bams", ["a.bam"], {"sample": "S1"}, workdir)
        assert workdir.is_dir()
        assert mock_run.call_count == 2
        assert outputs == [workdir / "S1.bam", workdir / "S1.bam.bai"]

    def test_non_zero_exit_propagates(self, tmp_path):
        """A failing command raises CalledProcessError with its status."""
        runner = ToolRunner(tools={"samtools": "false"})
        with pytest.raises(subprocess.CalledProcessError) as exc_info:
            runner.execute("merge_sample_bams", ["a.bam"], {"sample": "S1"}, tmp_path)
        assert exc_info.value.returncode == 1
