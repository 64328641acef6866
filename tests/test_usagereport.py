import pytest

from gwplugins.usagereport import (
    MultiValidationError,
    UsageReportPlugin,
    UsageReportRequest,
    ValidationError,
)


def good_plugin() -> UsageReportPlugin:
    return UsageReportPlugin(name="plugin-a", version="1.0.0", checksum="abcdef")


def good_request(**overrides) -> UsageReportRequest:
    values = dict(
        version="0.8.0",
        runtime_version="3.10",
        goos="linux",
        goarch="amd64",
        service="gateway",
        dev_mode=False,
        plugins=[good_plugin()],
    )
    values.update(overrides)
    return UsageReportRequest(**values)


def test_valid_plugin_passes():
    plugin = good_plugin()
    assert plugin.validate() is None
    assert plugin.validate_all() is None


def test_plugin_short_name_fails_first():
    plugin = UsageReportPlugin(name="ab", version="x", checksum="")
    with pytest.raises(ValidationError) as info:
        plugin.validate()
    assert info.value.field == "Name"
    assert info.value.reason == "value length must be at least 5 runes"
    assert info.value.error_name == "PluginValidationError"


def test_plugin_validate_all_collects_every_error():
    plugin = UsageReportPlugin(name="ab", version="x", checksum="")
    with pytest.raises(MultiValidationError) as info:
        plugin.validate_all()
    fields = [err.field for err in info.value.errors]
    assert fields == ["Name", "Version", "Checksum"]
    assert str(info.value) == "; ".join(str(err) for err in info.value.errors)


@pytest.mark.parametrize("length, ok", [(4, False), (5, True), (64, True), (65, False)])
def test_plugin_checksum_bounds(length, ok):
    plugin = UsageReportPlugin(name="plugin-a", version="1.0.0", checksum="a" * length)
    if ok:
        assert plugin.validate() is None
    else:
        with pytest.raises(ValidationError) as info:
            plugin.validate()
        assert info.value.field == "Checksum"
        assert info.value.reason == "value length must be between 5 and 64 runes, inclusive"


def test_lengths_count_characters_not_bytes():
    plugin = UsageReportPlugin(name="\u00e9\u00e9\u00e9\u00e9\u00e9", version="1.0.0", checksum="abcde")
    assert plugin.validate() is None


def test_error_message_format():
    plugin = UsageReportPlugin(name="ab", version="1.0.0", checksum="abcde")
    with pytest.raises(ValidationError) as info:
        plugin.validate()
    assert str(info.value) == "invalid Plugin.Name: value length must be at least 5 runes"


def test_valid_request_passes():
    request = good_request()
    assert request.validate() is None
    assert request.validate_all() is None


def test_request_dev_mode_has_no_rule():
    assert good_request(dev_mode=True).validate_all() is None


@pytest.mark.parametrize(
    "attr, label",
    [
        ("runtime_version", "RuntimeVersion"),
        ("goos", "Goos"),
        ("goarch", "Goarch"),
        ("service", "Service"),
    ],
)
def test_request_empty_fields(attr, label):
    request = good_request(**{attr: ""})
    with pytest.raises(ValidationError) as info:
        request.validate()
    assert info.value.field == label
    assert info.value.reason == "value length must be at least 1 runes"


def test_request_short_version():
    with pytest.raises(ValidationError) as info:
        good_request(version="1.0").validate()
    assert info.value.field == "Version"
    assert info.value.error_name == "UsageReportRequestValidationError"


def test_request_invalid_plugin_wraps_first_error():
    bad = UsageReportPlugin(name="ab", version="x", checksum="")
    request = good_request(plugins=[good_plugin(), bad])
    with pytest.raises(ValidationError) as info:
        request.validate()
    err = info.value
    assert err.field == "Plugins[1]"
    assert err.reason == "embedded message failed validation"
    assert isinstance(err.cause, ValidationError)
    assert err.cause.field == "Name"
    assert str(err).endswith(" | caused by: " + str(err.cause))


def test_request_validate_all_nests_plugin_errors():
    bad = UsageReportPlugin(name="ab", version="x", checksum="")
    request = good_request(version="", goos="", plugins=[bad])
    with pytest.raises(MultiValidationError) as info:
        request.validate_all()
    errors = info.value.errors
    assert [err.field for err in errors] == ["Version", "Goos", "Plugins[0]"]
    nested = errors[-1].cause
    assert isinstance(nested, MultiValidationError)
    assert len(nested.errors) == 3


def test_first_error_matches_first_of_all():
    request = good_request(version="", service="")
    with pytest.raises(ValidationError) as first:
        request.validate()
    with pytest.raises(MultiValidationError) as every:
        request.validate_all()
    assert str(first.value) == str(every.value.errors[0])