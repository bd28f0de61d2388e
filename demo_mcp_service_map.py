# demo_mcp_service_map.py
# Version: v1
#
# Demo: build an APM context and print services plus the service map.
#
# Usage (bash):
#
#   export APM_MOCK_MODE=1        # or point APM_OPENSEARCH_URL at a cluster
#   python demo_mcp_service_map.py

import asyncio
from typing import Any, Dict, List

from observability_apm_mcp.context import ApmContext
from observability_apm_mcp.tools import tasks


async def main() -> None:
    ctx = ApmContext.from_config()

    print("Calling MCP task: list_services()")
    result: Dict[str, Any] = await tasks.list_services(
        ctx, "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z"
    )

    summaries: List[Dict[str, Any]] = result.get("ServiceSummaries", [])
    print(f"Services returned: {len(summaries)}")
    for s in summaries:
        key = s["KeyAttributes"]
        platform = s["AttributeMaps"][0].get("PlatformType")
        print(f"- {key['Name']} env={key['Environment']!r} platform={platform}")

    print()
    print("Calling MCP task: get_service_map()")
    graph = await tasks.get_service_map(ctx, "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z")
    for edge in graph.get("Edges", []):
        print(f"  {edge['SourceNodeId']} -> {edge['DestinationNodeId']}")

    group_by = graph.get("AvailableGroupByAttributes", {})
    if group_by:
        print("Group-by attributes:")
        for path, values in group_by.items():
            print(f"  {path}: {values}")


if __name__ == "__main__":
    asyncio.run(main())
