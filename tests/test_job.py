import pytest

from models.job import DownloadJob, JobStatus
from models.track import ItemKind
from tests.helpers import make_track, make_tracks
from utils.exceptions import ErrorKind, ValidationError


def test_create_requires_at_least_one_track():
    with pytest.raises(ValidationError) as exc_info:
        DownloadJob.create(ItemKind.ALBUM, [])

    assert exc_info.value.kind == ErrorKind.VALIDATION


def test_new_job_defaults():
    job = DownloadJob.create(ItemKind.ALBUM, make_tracks(3), owner_ref="chat-1")

    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert job.total_count == 3
    assert job.is_multi_item
    assert job.completed_at is None
    assert isinstance(job.items, tuple)


def test_ids_are_unique():
    first = DownloadJob.create(ItemKind.TRACK, [make_track()])
    second = DownloadJob.create(ItemKind.TRACK, [make_track()])

    assert first.id != second.id


@pytest.mark.parametrize("owner_ref, expected", [(None, False), ("", False), ("0", False), ("42", True)])
def test_has_owner(owner_ref, expected):
    job = DownloadJob.create(ItemKind.TRACK, [make_track()], owner_ref=owner_ref)

    assert job.has_owner is expected


def test_start_processing_is_idempotent():
    job = DownloadJob.create(ItemKind.TRACK, [make_track()])

    assert job.start_processing() is True
    assert job.start_processing() is False
    assert job.status == JobStatus.PROCESSING


def test_start_processing_does_not_leave_terminal_state():
    job = DownloadJob.create(ItemKind.TRACK, [make_track()])
    job.start_processing()
    job.fail("boom")

    assert job.start_processing() is False
    assert job.status == JobStatus.FAILED


def test_update_progress_clamps_and_never_goes_back():
    job = DownloadJob.create(ItemKind.ALBUM, make_tracks(2))
    job.start_processing()

    job.update_progress(150, "Track 1")
    assert job.progress == 100

    job = DownloadJob.create(ItemKind.ALBUM, make_tracks(2))
    job.start_processing()
    job.update_progress(60, "Track 2")
    job.update_progress(10, "Track 1")

    assert job.progress == 60
    assert job.current_item_label == "Track 1"

    job.update_progress(-5)
    assert job.progress == 60


def test_complete_item_tracks_count_and_progress():
    job = DownloadJob.create(ItemKind.ALBUM, make_tracks(4))
    job.start_processing()

    job.complete_item()
    job.complete_item()

    assert job.completed_count == 2
    assert job.progress == 50

    for _ in range(5):
        job.complete_item()

    assert job.completed_count == 4
    assert job.progress == 100


def test_complete_sets_terminal_fields():
    job = DownloadJob.create(ItemKind.TRACK, [make_track()])
    job.start_processing()
    job.update_progress(40, "Track 1")

    assert job.complete() is True
    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.current_item_label is None
    assert job.completed_at is not None


def test_only_one_terminal_transition():
    job = DownloadJob.create(ItemKind.TRACK, [make_track()])
    job.start_processing()

    assert job.fail("first") is True
    completed_at = job.completed_at

    assert job.complete() is False
    assert job.fail("second") is False
    assert job.status == JobStatus.FAILED
    assert job.error_message == "first"
    assert job.completed_at == completed_at


def test_progress_frozen_after_terminal():
    job = DownloadJob.create(ItemKind.TRACK, [make_track()])
    job.start_processing()
    job.fail("boom")

    job.update_progress(80, "late")

    assert job.progress == 0
    assert job.current_item_label is None


def test_fail_without_message_uses_placeholder():
    job = DownloadJob.create(ItemKind.TRACK, [make_track()])
    job.start_processing()
    job.fail("")

    assert job.error_message == "Unknown error"
