import pytest

from citypulse.enrichment.prompt_loader import PROMPT_TASKS, load_prompt, prompt_path


def test_prompt_path_maps_versions():
    p1 = prompt_path(task="categorize", prompt_version="v001")
    assert p1.as_posix().endswith("prompts/categorize/v001.md")
    p2 = prompt_path(task="synthesize", prompt_version="v002")
    assert p2.as_posix().endswith("prompts/synthesize/v002.md")


def test_prompt_path_rejects_bad_prefix():
    with pytest.raises(ValueError):
        prompt_path(task="categorize", prompt_version="001")


def test_prompt_path_rejects_unknown_task():
    with pytest.raises(ValueError):
        prompt_path(task="translate", prompt_version="v001")


@pytest.mark.parametrize("task", PROMPT_TASKS)
def test_load_prompt_reads_shipped_files(task):
    prompt = load_prompt(task=task, prompt_version="v001")
    assert isinstance(prompt, str)
    assert len(prompt) > 10


def test_load_prompt_missing_version():
    with pytest.raises(FileNotFoundError):
        load_prompt(task="sentiment", prompt_version="v999")
