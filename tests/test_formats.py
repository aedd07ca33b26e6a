"""Tests for input file classification and list expansion."""

import gzip

import pytest

from txrun.formats import (
    check_missing,
    error_msg,
    exit_with,
    get_ftype,
    vcf_bam_args,
)


@pytest.fixture
def inputs(tmp_path):
    bam = tmp_path / "sample.bam"
    bam.write_bytes(b"BAM\x01")
    cram = tmp_path / "sample.cram"
    cram.write_bytes(b"CRAM")
    vcf = tmp_path / "calls.vcf"
    vcf.write_text("##fileformat=VCFv4.2\n#CHROM\tPOS\n")
    vcf_gz = tmp_path / "more.vcf.gz"
    with gzip.open(vcf_gz, "wt") as f:
        f.write("##fileformat=VCFv4.1\n")
    return {"bam": bam, "cram": cram, "vcf": vcf, "vcf_gz": vcf_gz}


class TestGetFtype:
    """Tests for get_ftype."""

    def test_bam_and_cram_by_extension(self, inputs):
        assert get_ftype(str(inputs["bam"])) == "bam"
        assert get_ftype(str(inputs["cram"])) == "bam"

    def test_vcf_by_content(self, inputs):
        assert get_ftype(str(inputs["vcf"])) == "vcf"
        assert get_ftype(str(inputs["vcf_gz"])) == "vcf"

    def test_other_files_are_lists(self, tmp_path):
        f = tmp_path / "files.txt"
        f.write_text("a.bam\n")
        assert get_ftype(str(f)) == "list"

    def test_empty_file_is_list(self, tmp_path):
        f = tmp_path / "empty.txt"
        f.touch()
        assert get_ftype(str(f)) == "list"


class TestVcfBamArgs:
    """Tests for vcf_bam_args."""

    def test_direct_files(self, inputs):
        result = vcf_bam_args([str(inputs["bam"]), str(inputs["vcf"])])
        assert result == {"bam": [str(inputs["bam"])], "vcf": [str(inputs["vcf"])]}

    def test_missing_files(self, tmp_path):
        missing = str(tmp_path / "nope.bam")
        assert vcf_bam_args([missing]) == {"missing": [missing]}

    def test_gz_fallback(self, inputs, tmp_path):
        """A name without .gz resolves to its gzipped sibling."""
        result = vcf_bam_args([str(tmp_path / "more.vcf")])
        assert result == {"vcf": [str(inputs["vcf_gz"])]}

    def test_list_file_expansion(self, inputs, tmp_path):
        nested = tmp_path / "nested.txt"
        nested.write_text(f"{inputs['cram']}\n")
        listing = tmp_path / "inputs.txt"
        listing.write_text(
            f"{inputs['bam']}\n\n{inputs['vcf']}   \n{nested}\n{tmp_path / 'gone.vcf'}\n"
        )

        result = vcf_bam_args([str(listing)])

        assert result == {
            "bam": [str(inputs["bam"]), str(inputs["cram"])],
            "vcf": [str(inputs["vcf"])],
            "missing": [str(tmp_path / "gone.vcf")],
        }

    def test_self_referencing_list(self, inputs, tmp_path):
        listing = tmp_path / "loop.txt"
        listing.write_text(f"{listing}\n{inputs['bam']}\n")
        assert vcf_bam_args([str(listing)]) == {"bam": [str(inputs["bam"])]}

    def test_corrupt_gzip_is_unreadable(self, inputs, tmp_path):
        fake = tmp_path / "fake.vcf.gz"
        fake.write_text("##fileformat=VCFv4.2\n")
        result = vcf_bam_args([str(fake), str(inputs["bam"])])
        assert result == {"unreadable": [str(fake)], "bam": [str(inputs["bam"])]}

    def test_truncated_gzip_list_is_unreadable(self, tmp_path):
        listing = tmp_path / "inputs.txt.gz"
        listing.write_bytes(gzip.compress(b"a.bam\nb.bam\n" * 50)[:30])
        assert vcf_bam_args([str(listing)]) == {"unreadable": [str(listing)]}


class TestReporting:
    """Tests for command line error reporting helpers."""

    def test_check_missing(self):
        options = {"bam": ["a.bam"]}
        assert check_missing(options, ["bam", "vcf"]) == ["Missing required option: vcf"]

    def test_check_missing_none(self):
        assert check_missing({"vcf": []}, ["vcf"]) == []

    def test_error_msg(self):
        assert error_msg(["one", "two"]) == (
            "The following errors occurred while parsing your command:\none\ntwo"
        )

    def test_exit_with(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            exit_with(2, "bad input")
        assert exc_info.value.code == 2
        assert "bad input" in capsys.readouterr().err
