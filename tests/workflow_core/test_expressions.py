from workflow_core.expressions import MISSING, interpolate, interpolate_string, lookup_path

SCOPE = {
    "trigger": {"body": {"customer": {"name": "Ada"}, "items": [{"sku": "A1"}, {"sku": "B2"}]}},
    "nodes": {"fetch": {"status": 200, "data": {"count": 3}}},
    "variables": {"region": "eu"},
}


def test_lookup_path_supports_list_indexes():
    assert lookup_path(SCOPE, "trigger.body.items[1].sku") == "B2"
    assert lookup_path(SCOPE, "trigger.body.items.0.sku") == "A1"
    assert lookup_path(SCOPE, "trigger.body.items[5]") is MISSING


def test_whole_template_keeps_the_value_type():
    assert interpolate_string("{{ nodes.fetch.data }}", SCOPE) == {"count": 3}
    assert interpolate_string("{{fetch.status}}", SCOPE) == 200


def test_missing_whole_template_is_none():
    assert interpolate_string("{{ nodes.unknown.field }}", SCOPE) is None


def test_embedded_templates_render_as_text():
    rendered = interpolate_string("Hi {{trigger.body.customer.name}}, {{fetch.data}} in {{variables.region}}{{nope}}", SCOPE)
    assert rendered == 'Hi Ada, {"count": 3} in eu'


def test_interpolate_walks_nested_structures():
    config = {
        "url": "https://api.example.com/{{variables.region}}/orders",
        "body": {"count": "{{fetch.data.count}}", "tags": ["{{trigger.body.customer.name}}", 7]},
    }
    assert interpolate(config, SCOPE) == {
        "url": "https://api.example.com/eu/orders",
        "body": {"count": 3, "tags": ["Ada", 7]},
    }
