"""Tests for RenderConfig, colour schemes and the process-wide default."""

import dataclasses

import pytest

from tracefold.config import (
    RESET,
    ColorRole,
    ColorScheme,
    RenderConfig,
    Style,
    ansi,
    get_default_config,
    set_default_config,
)
from tracefold.errors import InvalidConfigurationError, TracefoldError


def test_defaults() -> None:
    config = RenderConfig()
    assert config.style is Style.COMPACT
    assert config.cache_enabled
    assert config.fold_enabled
    assert not config.boot_method_type_visible
    assert not config.synthesized_method_type_visible
    assert config.unique_method_type_visible
    assert not config.throwable_id_visible
    assert config.check_duplicate_trace_enabled
    assert config.only_compare_hash_enabled
    assert config.duplicate_trace_max_size == 8
    assert not config.color_scheme_enabled
    assert config.color_scheme is None


def test_style_is_coerced_from_string() -> None:
    assert RenderConfig(style="canonical").style is Style.CANONICAL


@pytest.mark.parametrize("size", [0, -1, True, 2.5])
def test_rejects_invalid_duplicate_block_size(size: object) -> None:
    with pytest.raises(InvalidConfigurationError) as excinfo:
        RenderConfig(duplicate_trace_max_size=size)
    assert isinstance(excinfo.value, ValueError)
    assert isinstance(excinfo.value, TracefoldError)
    assert "duplicate_trace_max_size" in str(excinfo.value)


def test_rejects_unknown_style() -> None:
    with pytest.raises(InvalidConfigurationError, match="style"):
        RenderConfig(style="fancy")


def test_replace_validates_eagerly() -> None:
    with pytest.raises(InvalidConfigurationError):
        RenderConfig().replace(duplicate_trace_max_size=0)


def test_config_is_frozen() -> None:
    with pytest.raises(dataclasses.FrozenInstanceError):
        RenderConfig().fold_enabled = False  # type: ignore[misc]


def test_indent_follows_style_unless_overridden() -> None:
    assert RenderConfig().indent == "    "
    assert RenderConfig(style=Style.CANONICAL).indent == "\t"
    assert RenderConfig(tab="  ").indent == "  "


def test_descriptor_hash_ignores_layout_fields() -> None:
    base = RenderConfig()
    for changes in (
        {"tab": "\t"},
        {"fold_enabled": False},
        {"check_duplicate_trace_enabled": False},
        {"throwable_id_visible": True},
        {"cache_enabled": False},
        {"duplicate_trace_max_size": 3},
    ):
        assert base.replace(**changes).descriptor_hash == base.descriptor_hash, changes


def test_descriptor_hash_tracks_descriptor_fields() -> None:
    base = RenderConfig()
    for changes in (
        {"style": Style.CANONICAL},
        {"boot_method_type_visible": True},
        {"synthesized_method_type_visible": True},
        {"unique_method_type_visible": False},
        {"color_scheme_enabled": True},
    ):
        assert base.replace(**changes).descriptor_hash != base.descriptor_hash, changes


def test_colour_table_changes_hash_only_when_enabled() -> None:
    scheme = ColorScheme.base().with_color(ColorRole.SIG_NAME, 33)
    assert RenderConfig(color_scheme=scheme).descriptor_hash == RenderConfig().descriptor_hash
    coloured = RenderConfig(color_scheme_enabled=True)
    assert coloured.with_colors(scheme).descriptor_hash != coloured.descriptor_hash


def test_enabling_colour_installs_base_scheme() -> None:
    config = RenderConfig(color_scheme_enabled=True)
    assert config.color_scheme == ColorScheme.base()
    assert config.color(ColorRole.AT) == "\x1b[38;5;208m"
    assert RenderConfig().color(ColorRole.AT) == ""


def test_ansi_components() -> None:
    assert ansi(0, 0, 0) == RESET
    assert ansi(38, 5, 39) == "\x1b[38;5;39m"
    with pytest.raises(InvalidConfigurationError):
        ansi(38, 5, 256)


def test_with_color_accepts_index_triple_and_escape() -> None:
    scheme = ColorScheme.base()
    assert scheme.with_color(ColorRole.AT, 33)[ColorRole.AT] == "\x1b[38;5;33m"
    assert scheme.with_color(ColorRole.AT, (1, 2, 3))[ColorRole.AT] == "\x1b[1;2;3m"
    assert scheme.with_color(ColorRole.AT, "\x1b[1m")[ColorRole.AT] == "\x1b[1m"
    assert scheme[ColorRole.AT] == "\x1b[38;5;208m"


def test_scheme_needs_one_code_per_role() -> None:
    with pytest.raises(InvalidConfigurationError):
        ColorScheme(("\x1b[0m",))


def test_from_env_overlays_variables() -> None:
    config = RenderConfig.from_env(
        {
            "TRACEFOLD_STYLE": " Canonical ",
            "TRACEFOLD_FOLD": "0",
            "TRACEFOLD_SHOW_IDS": "yes",
            "TRACEFOLD_DUPLICATE_MAX_SIZE": "3",
        }
    )
    assert config.style is Style.CANONICAL
    assert not config.fold_enabled
    assert config.throwable_id_visible
    assert config.duplicate_trace_max_size == 3
    assert config.cache_enabled


def test_from_env_without_variables_returns_base() -> None:
    base = RenderConfig(tab="  ")
    assert RenderConfig.from_env({}, base=base) is base


@pytest.mark.parametrize(
    "environ",
    [
        {"TRACEFOLD_COLOR": "maybe"},
        {"TRACEFOLD_DUPLICATE_MAX_SIZE": "many"},
        {"TRACEFOLD_DUPLICATE_MAX_SIZE": "0"},
        {"TRACEFOLD_STYLE": "fancy"},
    ],
)
def test_from_env_rejects_bad_values(environ: dict[str, str]) -> None:
    with pytest.raises(InvalidConfigurationError):
        RenderConfig.from_env(environ)


def test_default_config_round_trip() -> None:
    custom = RenderConfig(style=Style.CANONICAL)
    set_default_config(custom)
    assert get_default_config() is custom


def test_default_config_rejects_other_types() -> None:
    with pytest.raises(TypeError):
        set_default_config({"style": "compact"})  # type: ignore[arg-type]
