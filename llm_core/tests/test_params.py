from llm_core.domain.models import Model, ReasoningEffort, SearchContextSize, SearchMode
from llm_core.providers.params import ParameterSet, merge, resolve_model_name


def test_merge_overrides_win_and_defaults_copied():
    defaults = ParameterSet(temperature=0.7, max_tokens=100).search_mode("web")
    overrides = {"temperature": 0.2, "search_recency_filter": "week"}
    merged = merge(defaults, overrides)
    assert merged.temperature == 0.2
    assert merged.max_tokens == 100
    assert merged.get("search_mode") == "web"
    assert merged.get("search_recency_filter") == "week"


def test_merge_does_not_alias_inputs():
    defaults = ParameterSet().search_domain_filter(["a.com"])
    merged = merge(defaults, None)
    merged.get("search_domain_filter").append("b.com")
    assert defaults.get("search_domain_filter") == ["a.com"]


def test_merge_is_idempotent():
    defaults = ParameterSet(temperature=0.7, top_p=0.9).return_related_questions(True)
    overrides = ParameterSet(model="sonar", temperature=0.1)
    once = merge(defaults, overrides)
    twice = merge(once, overrides)
    assert once.as_dict() == twice.as_dict()


def test_none_override_keeps_default():
    merged = merge({"temperature": 0.5}, {"temperature": None})
    assert merged.temperature == 0.5


def test_from_mapping_known_keys_case_insensitive():
    p = ParameterSet.from_mapping({"Temperature": 0.3, "MODEL": "gpt-4o-mini", "custom": 1})
    assert p.temperature == 0.3
    assert p.model == "gpt-4o-mini"
    assert p.extra == {"custom": 1}
    assert p.keys() == ["model", "temperature", "custom"]


def test_model_object_becomes_name():
    p = ParameterSet()
    p["model"] = Model.of("sonar", 1)
    assert p.model == "sonar"


def test_enum_values_render_lowercase():
    p = ParameterSet(reasoning_effort=ReasoningEffort.HIGH)
    assert p.as_dict()["reasoning_effort"] == "high"


def test_rename_moves_value():
    p = ParameterSet(max_tokens=50)
    p.rename("max_tokens", "max_completion_tokens")
    assert "max_tokens" not in p
    assert p["max_completion_tokens"] == 50


def test_web_search_options_accumulate():
    p = ParameterSet().search_context_size("high").user_location(1.0, 2.0, "br")
    opts = p.get("web_search_options")
    assert opts["search_context_size"] == "high"
    assert opts["user_location"]["country"] == "br"


def test_resolve_model_name():
    assert resolve_model_name(ParameterSet(model="  x  "), "fallback") == "x"
    assert resolve_model_name(ParameterSet(model="   "), "fallback") == "fallback"
    assert resolve_model_name(None, "fallback") == "fallback"
    assert resolve_model_name({"model": "dict-model"}, None) == "dict-model"


def test_search_enums_render_lowercase():
    p = ParameterSet().search_mode(SearchMode.ACADEMIC).search_context_size(SearchContextSize.HIGH)
    assert p.get("search_mode") == "academic"
    assert p.get("web_search_options") == {"search_context_size": "high"}
