import pytest

from fleetforms.timecheck import TRANSACTION_CHECKPOINTS, TimeCheckpointSpec, TimeSequenceValidator, duty_hours, to_minutes

VALIDATOR = TimeSequenceValidator(TRANSACTION_CHECKPOINTS)
IDS = [c.id for c in TRANSACTION_CHECKPOINTS]
IN_ORDER = ["08:00", "08:15", "09:00", "17:00", "17:15", "18:00"]


def _chronology(errors):
    return {fid: [e for e in found if e.kind == "ChronologyError"] for fid, found in errors.items()}


@pytest.mark.parametrize("text,minutes", [
    ("00:00", 0),
    ("9:05", 545),
    ("21:30:00", 1290),
    ("9:30 PM", 1290),
    ("12:00 AM", 0),
    ("12:15 pm", 735),
])
def test_to_minutes(text, minutes):
    assert to_minutes(text) == minutes


@pytest.mark.parametrize("text", ["24:00", "7:60", "13:00 PM", "noon", "", None])
def test_to_minutes_rejects_garbage(text):
    assert to_minutes(text) is None


def test_exactly_six_ordered_checkpoints():
    assert len(TRANSACTION_CHECKPOINTS) == 6
    assert [c.sequence for c in TRANSACTION_CHECKPOINTS] == [1, 2, 3, 4, 5, 6]


def test_non_decreasing_sequence_has_no_chronology_errors():
    values = dict(zip(IDS, IN_ORDER))
    errors = VALIDATOR.validate(values)
    assert all(found == [] for found in errors.values())


def test_equal_neighbours_are_allowed():
    values = dict(zip(IDS, ["08:00"] * 6))
    assert all(found == [] for found in VALIDATOR.validate(values).values())


@pytest.mark.parametrize("index", range(1, 6))
def test_single_earlier_checkpoint_gives_exactly_one_error(index):
    times = list(IN_ORDER)
    times[index] = "07:00" if index == 1 else times[index - 2]
    values = dict(zip(IDS, times))

    chronology = _chronology(VALIDATOR.validate(values))

    flagged = {fid: found for fid, found in chronology.items() if found}
    assert list(flagged) == [IDS[index]]
    assert len(flagged[IDS[index]]) == 1
    assert TRANSACTION_CHECKPOINTS[index - 1].label in flagged[IDS[index]][0].message


def test_twelve_hour_and_twenty_four_hour_inputs_mix():
    values = dict(zip(IDS, ["8:00 AM", "08:30", "10:00 AM", "1:00 PM", "13:30", "6:00 PM"]))
    assert all(found == [] for found in VALIDATOR.validate(values).values())


def test_blank_checkpoints_are_skipped_for_ordering():
    values = {IDS[0]: "08:00", IDS[1]: "", IDS[2]: "07:30"}
    errors = VALIDATOR.validate(values)

    assert errors[IDS[1]] == []
    assert len(errors[IDS[2]]) == 1
    assert TRANSACTION_CHECKPOINTS[0].label in errors[IDS[2]][0].message


def test_unreadable_time_is_a_format_error():
    errors = VALIDATOR.validate({IDS[0]: "8 o'clock"})
    assert [e.kind for e in errors[IDS[0]]] == ["FormatError"]


def test_duty_hours_roll_over_midnight():
    assert duty_hours("23:30", "01:00") == 1.5
    assert duty_hours("08:00", "18:30") == 10.5
    assert duty_hours("08:00", None) is None


def test_ordering_does_not_wrap_around_midnight():
    # a shift starting late and closing after midnight still breaks the ordering check
    values = {IDS[0]: "23:30", IDS[-1]: "01:00"}
    errors = VALIDATOR.validate(values)

    assert [e.kind for e in errors[IDS[-1]]] == ["ChronologyError"]
    assert duty_hours(values[IDS[0]], values[IDS[-1]]) == 1.5


def test_sequence_indexes_must_be_unique():
    with pytest.raises(ValueError):
        TimeSequenceValidator([TimeCheckpointSpec("a", 1, "A"), TimeCheckpointSpec("b", 1, "B")])
