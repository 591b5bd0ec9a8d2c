import zipfile
from pathlib import Path

from typer.testing import CliRunner

from core.ct_batch.cli import app
from volumes import dicom_bytes, nifti_bytes

runner = CliRunner()


def write_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        f'[runtime]\noutput_dir = "{(tmp_path / "runs").as_posix()}"\ntransform = "volumes:tagging_transform"\n',
        encoding="utf-8",
    )
    return path


def test_convert_directory_writes_archive(tmp_path: Path) -> None:
    source = tmp_path / "study"
    (source / "series").mkdir(parents=True)
    (source / "t1.nii").write_bytes(nifti_bytes())
    (source / "series" / "slice.dcm").write_bytes(dicom_bytes())
    (source / "readme.txt").write_text("notes", encoding="utf-8")
    target = tmp_path / "out.zip"

    result = runner.invoke(app, ["convert", str(source), "--output", str(target), "--config", str(write_config(tmp_path))])

    assert result.exit_code == 0, result.output
    with zipfile.ZipFile(target) as archive:
        assert sorted(archive.namelist()) == ["slice_ct.nii.gz", "t1_ct.nii.gz"]
    assert not target.with_name("out.zip.part").exists()
    assert (tmp_path / "runs" / "summary.csv").exists()


def test_convert_without_valid_files_exits_non_zero(tmp_path: Path) -> None:
    source = tmp_path / "notes"
    source.mkdir()
    (source / "readme.txt").write_text("notes", encoding="utf-8")
    target = tmp_path / "out.zip"

    result = runner.invoke(app, ["convert", str(source), "--output", str(target), "--config", str(write_config(tmp_path))])

    assert result.exit_code == 1
    assert "NO_VALID_FILES" in result.output
    assert not target.exists()


def test_config_command_prints_effective_configuration(tmp_path: Path) -> None:
    result = runner.invoke(app, ["config", "--config", str(write_config(tmp_path))])
    assert result.exit_code == 0
    assert "converted_ct.zip" in result.output
    assert "volumes:tagging_transform" in result.output


def test_new_batch_id() -> None:
    result = runner.invoke(app, ["new-batch-id"])
    assert result.exit_code == 0
    assert result.output.strip().startswith("batch-")
