from __future__ import annotations

from collections import Counter

import pytest

from fritzbox_upnp_client_exceptions import ActionNotFound, InvocationError, ServiceNotFound


class FakeAction:

    def __init__(self, directory: "FakeDirectory", service: str, name: str, result):
        self.directory = directory
        self.service = service
        self.name = name
        self.result = result

    def invoke(self) -> dict[str, object]:
        self.directory.calls[(self.service, self.name)] += 1
        if isinstance(self.result, Exception):
            raise self.result
        return dict(self.result)


class FakeService:

    def __init__(self, service_type: str, actions: dict[str, FakeAction]):
        self.service_type = service_type
        self.actions = actions

    def lookup(self, name: str) -> FakeAction:
        if name not in self.actions:
            raise ActionNotFound(self.service_type, name)
        return self.actions[name]


class FakeDirectory:
    """In-memory service directory counting every remote call."""

    def __init__(self, responses: dict[str, dict[str, object]]):
        self.calls: Counter = Counter()
        self.services: dict[str, FakeService] = {}
        for service_type, actions in responses.items():
            self.services[service_type] = FakeService(service_type, {
                name: FakeAction(self, service_type, name, result)
                for name, result in actions.items()
            })

    def lookup(self, service_type: str) -> FakeService:
        if service_type not in self.services:
            raise ServiceNotFound(service_type)
        return self.services[service_type]

    def set_result(self, service_type: str, action: str, result) -> None:
        self.services[service_type].actions[action].result = result


WAN_COMMON = "urn:schemas-upnp-org:service:WANCommonInterfaceConfig:1"
WAN_IP = "urn:schemas-upnp-org:service:WANIPConnection:1"


@pytest.fixture
def fritzbox_responses() -> dict[str, dict[str, object]]:
    return {
        WAN_COMMON: {
            "GetTotalPacketsReceived": {"TotalPacketsReceived": 100},
            "GetTotalPacketsSent": {"TotalPacketsSent": 80},
            "GetAddonInfos": {
                "TotalBytesReceived": 123456,
                "TotalBytesSent": 65432,
                "ByteSendRate": 512,
                "ByteReceiveRate": 2048,
                "PacketSendRate": 3,
                "PacketReceiveRate": 7,
            },
            "GetCommonLinkProperties": {"PhysicalLinkStatus": "Up"},
        },
        WAN_IP: {
            "GetStatusInfo": {
                "ConnectionStatus": "Connected",
                "LastConnectionError": "ERROR_NONE",
                "Uptime": 86400,
            },
        },
    }


@pytest.fixture
def directory(fritzbox_responses) -> FakeDirectory:
    return FakeDirectory(fritzbox_responses)


@pytest.fixture
def failing_call() -> InvocationError:
    return InvocationError("GetStatusInfo: HTTP 500")


@pytest.fixture
def make_directory():
    return FakeDirectory
