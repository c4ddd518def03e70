"""Tests for MethodIdentity interning and hidden-frame classification."""

import gc
import json
import sys

from tracefold.config import RenderConfig
from tracefold.identity import CodeMap, HiddenFlag, MethodIdentity, ScopeNames, hidden_flags, is_boot_file


def unique_helper() -> int:
    return 1


class Holder:
    @property
    def value(self) -> int:
        return 1

    @value.setter
    def value(self, new: int) -> None:
        pass

    @staticmethod
    def build() -> "Holder":
        return Holder()


def _dynamic_function():
    namespace: dict[str, object] = {}
    exec(compile("def dynamic():\n    return 1\n", "dynamic_module.py", "exec"), namespace)
    return namespace


def test_identity_is_interned_per_code() -> None:
    code = unique_helper.__code__
    assert MethodIdentity.of(code) is MethodIdentity.of(code)
    assert MethodIdentity.of(code).resolve() is code


def test_identities_of_different_code_differ() -> None:
    first = MethodIdentity.of(unique_helper.__code__)
    second = MethodIdentity.of(Holder.build.__code__)
    assert first != second
    assert len({first, second, MethodIdentity.of(unique_helper.__code__)}) == 2


def test_identity_does_not_keep_code_alive() -> None:
    namespace = _dynamic_function()
    identity = MethodIdentity.of(namespace["dynamic"].__code__)  # type: ignore[attr-defined]
    assert identity.alive
    namespace.clear()
    gc.collect()
    assert not identity.alive
    assert identity.resolve() is None
    assert "collected" in repr(identity)


def _compile_twin(filename: str):
    namespace: dict[str, object] = {}
    exec(compile("def twin():\n    return 1\n", filename, "exec"), namespace)
    return namespace["twin"].__code__  # type: ignore[attr-defined]


def test_identity_follows_the_code_object_not_its_equality() -> None:
    alpha, beta = _compile_twin("alpha.py"), _compile_twin("beta.py")
    assert alpha is not beta
    assert MethodIdentity.of(alpha) is not MethodIdentity.of(beta)
    assert MethodIdentity.of(alpha) != MethodIdentity.of(beta)
    assert MethodIdentity.of(beta).filename == "beta.py"


def test_code_map_drops_entries_with_their_code() -> None:
    released: list[str] = []
    codes: CodeMap[str] = CodeMap(on_release=released.append)
    alpha, beta = _compile_twin("alpha.py"), _compile_twin("beta.py")
    assert codes.setdefault(alpha, "alpha") == "alpha"
    assert codes.setdefault(beta, "beta") == "beta"
    assert codes.setdefault(alpha, "other") == "alpha"
    assert codes.get(beta) == "beta"
    assert alpha in codes
    assert len(codes) == 2

    del beta
    gc.collect()
    assert released == ["beta"]
    assert codes.values() == ["alpha"]
    assert len(codes) == 1


def test_scope_names_count_property_accessors_twice() -> None:
    names = ScopeNames.for_module(sys.modules[__name__])
    assert names.is_unique("unique_helper")
    assert names.is_unique("Holder.build")
    assert names.count("Holder.value") == 2
    assert not names.is_unique("Holder.value")
    assert ScopeNames.for_module(sys.modules[__name__]) is names


def test_boot_files() -> None:
    assert is_boot_file(json.dumps.__code__.co_filename)
    assert is_boot_file("<frozen importlib._bootstrap>")
    assert not is_boot_file(__file__)


def test_default_config_hides_boot_and_synthetic_code() -> None:
    config = RenderConfig()
    assert hidden_flags(json.dumps.__code__, "json", config) == HiddenFlag.BOOT
    assert hidden_flags((lambda: 1).__code__, __name__, config) == HiddenFlag.SYNTHETIC_METHOD
    assert hidden_flags(compile("x = 1", "<string>", "exec"), None, config) == HiddenFlag.SYNTHETIC_SCOPE
    assert hidden_flags(unique_helper.__code__, __name__, config) == HiddenFlag.NONE


def test_visibility_toggles_clear_flags() -> None:
    config = RenderConfig(boot_method_type_visible=True, synthesized_method_type_visible=True)
    assert hidden_flags(json.dumps.__code__, "json", config) == HiddenFlag.NONE
    assert hidden_flags((lambda: 1).__code__, __name__, config) == HiddenFlag.NONE


def test_unique_names_hidden_when_requested() -> None:
    config = RenderConfig(unique_method_type_visible=False)
    assert hidden_flags(unique_helper.__code__, __name__, config) == HiddenFlag.UNIQUE_NAME
    assert hidden_flags(Holder.value.fget.__code__, __name__, config) == HiddenFlag.NONE
    module_code = compile("x = 1", "unique_module.py", "exec")
    assert hidden_flags(module_code, None, config) == HiddenFlag.UNIQUE_NAME
