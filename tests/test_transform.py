# Observability APM MCP Server
# File: tests/test_transform.py
# Version: v1

import json

from observability_apm_mcp import transform
from observability_apm_mcp.models import DataFrame, Field


def _frame(columns):
    size = max((len(v) for v in columns.values()), default=0)
    return DataFrame(
        fields=[Field(name=k, values=list(v)) for k, v in columns.items()],
        size=size,
    )


def test_transpose_data_frame_pads_short_columns() -> None:
    frame = _frame({"a": [1, 2], "b": ["x"]})
    assert transform.transpose_data_frame(frame) == [
        {"a": 1, "b": "x"},
        {"a": 2, "b": None},
    ]
    assert transform.transpose_data_frame(DataFrame.empty()) == []
    assert transform.transpose_data_frame(DataFrame(fields=[], size=5)) == []


def test_transpose_accepts_jdbc_payload() -> None:
    payload = {
        "schema": [{"name": "serviceName", "type": "string"}],
        "datarows": [["checkout"], ["payment"]],
        "total": 2,
        "size": 2,
    }
    assert transform.transpose_data_frame(payload) == [
        {"serviceName": "checkout"},
        {"serviceName": "payment"},
    ]


def test_parse_environment_type_variants() -> None:
    assert transform.parse_environment_type("eks:demo/default") == {
        "platform": "eks",
        "cluster": "demo",
        "namespace": "default",
    }
    assert transform.parse_environment_type("eks:demo") == {"platform": "generic"}
    assert transform.parse_environment_type("ec2:default") == {"platform": "ec2"}
    assert transform.parse_environment_type("ec2:my-asg") == {
        "platform": "ec2",
        "autoScalingGroup": "my-asg",
    }
    assert transform.parse_environment_type("ecs:shop") == {"platform": "ecs", "cluster": "shop"}
    assert transform.parse_environment_type("lambda:default") == {"platform": "lambda"}
    assert transform.parse_environment_type("generic:default") == {"platform": "generic"}
    assert transform.parse_environment_type(None) == {"platform": "generic"}
    assert transform.parse_environment_type("-") == {"platform": "generic"}


def test_build_attribute_maps() -> None:
    eks = transform.build_attribute_maps(
        "AWS::EKS", {"platform": "eks", "cluster": "demo", "namespace": "default"}, "checkout"
    )
    assert eks == [
        {
            "PlatformType": "AWS::EKS",
            "EKS.Cluster": "demo",
            "K8s.Namespace": "default",
            "K8s.Workload": "checkout",
        }
    ]
    lam = transform.build_attribute_maps("AWS::Lambda", {"platform": "lambda"}, "email")
    assert lam == [{"PlatformType": "AWS::Lambda", "Lambda.Function.Name": "email"}]
    assert transform.build_attribute_maps("Generic", {"platform": "generic"}) == [
        {"PlatformType": "Generic"}
    ]


def test_extract_time_range_handles_mixed_inputs() -> None:
    tr = transform.extract_time_range(
        [1704067260, "2024-01-01T00:00:00Z", 1704067320000, None, "garbage"]
    )
    assert tr.start == 1704067200
    assert tr.end == 1704067320


def test_extract_time_range_over_epoch_seconds() -> None:
    tr = transform.extract_time_range([1704067200, 1704070800, 1704074400])
    assert tr.start == 1704067200
    assert tr.end == 1704074400


def test_extract_time_range_ignores_non_finite_numbers() -> None:
    tr = transform.extract_time_range([1704067200, float("inf"), float("-inf")])
    assert (tr.start, tr.end) == (1704067200, 1704067200)

    tr = transform.extract_time_range(json.loads("[1704067200, NaN, 1704067800, Infinity]"))
    assert (tr.start, tr.end) == (1704067200, 1704067800)


def test_extract_time_range_falls_back_to_now(monkeypatch) -> None:
    monkeypatch.setattr(transform.time, "time", lambda: 1700000000.5)
    tr = transform.extract_time_range([])
    assert tr.start == tr.end == 1700000000


def test_group_by_attributes_are_flattened_sorted_and_unique() -> None:
    out = transform.build_available_group_by_attributes(
        [
            {"telemetry": {"sdk": {"language": "python"}}, "team": "b"},
            {"telemetry": {"sdk": {"language": "java"}}, "team": "a"},
            {"telemetry": {"sdk": {"language": "python"}}},
            None,
            "not-a-mapping",
        ]
    )
    assert out == {
        "telemetry.sdk.language": ["java", "python"],
        "team": ["a", "b"],
    }


def test_list_services_dedups_and_skips_nameless_rows() -> None:
    frame = _frame(
        {
            "serviceName": ["checkout", "checkout", None, "payment", "legacy"],
            "EnvironmentType": [
                "eks:demo/default",
                "eks:demo/default",
                "ec2:x",
                "ec2:payment-asg",
                None,
            ],
            "PlatformType": ["AWS::EKS", "AWS::EKS", "AWS::EC2", "AWS::EC2", None],
            "timestamp": [100, 300, 50, 200, 150],
        }
    )
    out = transform.transform_list_services_response(frame)

    names = [s["KeyAttributes"]["Name"] for s in out["ServiceSummaries"]]
    assert names == ["checkout", "payment", "legacy"]

    legacy = out["ServiceSummaries"][2]
    assert legacy["KeyAttributes"] == {"Type": "Service", "Name": "legacy", "Environment": "-"}
    assert legacy["AttributeMaps"] == [{"PlatformType": "Generic"}]

    payment = out["ServiceSummaries"][1]
    assert payment["AttributeMaps"] == [
        {"PlatformType": "AWS::EC2", "EC2.AutoScalingGroup": "payment-asg"}
    ]

    assert out["StartTime"] == 50
    assert out["EndTime"] == 300


def test_list_services_tolerates_object_valued_columns() -> None:
    frame = _frame(
        {
            "serviceName": ["a", {"name": "b"}, ["c"], "d"],
            "EnvironmentType": [{"platform": "eks"}, "eks:x/y", "ec2:asg", ["lambda"]],
            "PlatformType": [None, None, None, {"bad": True}],
            "timestamp": [100, 200, 300, 400],
        }
    )
    out = transform.transform_list_services_response(frame)

    keys = [s["KeyAttributes"] for s in out["ServiceSummaries"]]
    assert keys == [
        {"Type": "Service", "Name": "a", "Environment": "-"},
        {"Type": "Service", "Name": "d", "Environment": "-"},
    ]
    assert out["ServiceSummaries"][1]["AttributeMaps"] == [{"PlatformType": "Generic"}]
    assert (out["StartTime"], out["EndTime"]) == (100, 400)


def test_get_service_response() -> None:
    frame = _frame(
        {
            "service.keyAttributes": [
                {"name": "checkout", "environment": "eks:demo/default", "type": "Service"}
            ],
            "service.groupByAttributes": [{"team": "payments"}],
        }
    )
    out = transform.transform_get_service_response(frame)
    service = out["Service"]
    assert service["KeyAttributes"] == {
        "Type": "Service",
        "Name": "checkout",
        "Environment": "eks:demo/default",
    }
    assert service["AttributeMaps"][0]["PlatformType"] == "AWS::EKS"
    assert service["AttributeMaps"][0]["K8s.Workload"] == "checkout"
    assert service["GroupByAttributes"] == {"team": "payments"}


def test_get_service_response_empty() -> None:
    assert transform.transform_get_service_response(DataFrame.empty()) == {"Service": None}


def test_operations_are_counted_in_first_seen_order() -> None:
    frame = _frame({"operation.name": ["POST /a", "GET /b", "POST /a", None, ""]})
    out = transform.transform_list_service_operations_response(frame)
    assert out == {
        "Operations": [
            {"Name": "POST /a", "Count": 2},
            {"Name": "GET /b", "Count": 1},
        ]
    }


def test_dependencies_accept_nested_key_attributes() -> None:
    frame = _frame(
        {
            "operation.remoteService.keyAttributes": [
                {"name": "payment", "environment": "ec2:asg"},
                {"name": "email", "environment": "lambda:default"},
                {"name": "payment", "environment": "ec2:asg"},
            ]
        }
    )
    out = transform.transform_list_service_dependencies_response(frame)
    assert out == {
        "Dependencies": [
            {"DependencyName": "payment", "Environment": "ec2:asg", "CallCount": 2},
            {"DependencyName": "email", "Environment": "lambda:default", "CallCount": 1},
        ]
    }


def test_service_map_nodes_edges_and_group_by() -> None:
    frontend = {"name": "frontend", "environment": "eks:demo/default"}
    checkout = {"name": "checkout", "environment": "eks:demo/default"}
    payment = {"name": "payment", "environment": "ec2:asg"}
    frame = _frame(
        {
            "service.keyAttributes": [frontend, checkout, checkout],
            "remoteService.keyAttributes": [checkout, payment, payment],
            "service.groupByAttributes": [{"lang": "js"}, {"lang": "py"}, {"lang": "py"}],
            "remoteService.groupByAttributes": [{"lang": "py"}, {}, None],
        }
    )
    out = transform.transform_get_service_map_response(frame)

    node_ids = [n["NodeId"] for n in out["Nodes"]]
    assert node_ids == [
        "frontend::eks:demo/default",
        "checkout::eks:demo/default",
        "payment::ec2:asg",
    ]
    assert all(n["Type"] == "AWS::CloudWatch::Service" for n in out["Nodes"])

    # One edge per row; repeated pairs are kept.
    assert len(out["Edges"]) == 3
    assert out["Edges"][0] == {
        "EdgeId": "frontend::eks:demo/default->checkout::eks:demo/default",
        "SourceNodeId": "frontend::eks:demo/default",
        "DestinationNodeId": "checkout::eks:demo/default",
    }
    assert out["AvailableGroupByAttributes"] == {"lang": ["js", "py"]}


def test_service_map_row_without_remote_adds_node_only() -> None:
    frame = _frame(
        {
            "service.keyAttributes": [{"name": "solo", "environment": "generic:default"}],
            "remoteService.keyAttributes": [None],
        }
    )
    out = transform.transform_get_service_map_response(frame)
    assert [n["Name"] for n in out["Nodes"]] == ["solo"]
    assert out["Edges"] == []
    assert out["AvailableGroupByAttributes"] == {}
