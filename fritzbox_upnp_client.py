from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin

import requests

from fritzbox_upnp_client_exceptions import *
from fritzbox_utils import local_name

logger = logging.getLogger(__name__)

FRITZBOX_CLIENT_DEFAULT_HEADERS = {
    "User-Agent": "fritzbox-influx/1.0 UPnP/1.0"
}

DEFAULT_TIMEOUT = 10

IGD_DESCRIPTION = "/igddesc.xml"

SOAP_ENVELOPE = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
    's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
    '<s:Body><u:{action} xmlns:u="{service}"></u:{action}></s:Body>'
    '</s:Envelope>'
)

INTEGER_TYPES = {"ui1", "ui2", "ui4", "ui8", "i1", "i2", "i4", "i8"}


@dataclass
class Argument:
    name: str
    direction: str
    state_variable: str
    data_type: str = "string"

    def convert(self, text: str):
        if self.data_type in INTEGER_TYPES:
            return int(text)
        if self.data_type == "boolean":
            return text.strip() in ("1", "true", "yes")
        return text


@dataclass
class Action:
    name: str
    service_type: str
    control_url: str
    session: requests.Session = field(repr=False)
    arguments: list[Argument] = field(default_factory=list)

    @property
    def out_arguments(self) -> dict[str, Argument]:
        return {a.name: a for a in self.arguments if a.direction == "out"}

    def invoke(self) -> dict[str, object]:
        """Call the action without input arguments.

        The result is keyed by the related state variable of every ``out``
        argument, e.g. ``NewTotalPacketsReceived`` is returned as
        ``TotalPacketsReceived``.
        """
        headers = {
            **FRITZBOX_CLIENT_DEFAULT_HEADERS,
            "Content-Type": 'text/xml; charset="utf-8"',
            "SoapAction": f'"{self.service_type}#{self.name}"',
        }
        body = SOAP_ENVELOPE.format(action=self.name, service=self.service_type)
        try:
            response = self.session.post(self.control_url,
                                         data=body.encode("utf-8"),
                                         headers=headers,
                                         timeout=DEFAULT_TIMEOUT)
        except requests.RequestException as e:
            raise InvocationError(f"{self.name}: {e}") from e

        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            if not response.ok:
                raise InvocationError(f"{self.name}: HTTP {response.status_code}") from e
            raise InvocationError(f"{self.name}: malformed response: {e}") from e

        fault = root.find(".//{*}Fault")
        if fault is not None:
            code = fault.findtext(".//{*}errorCode") or fault.findtext("faultcode") or "?"
            description = fault.findtext(".//{*}errorDescription") or fault.findtext("faultstring") or ""
            raise InvocationError(f"{self.name}: SOAP fault {code} {description}".rstrip())
        if not response.ok:
            raise InvocationError(f"{self.name}: HTTP {response.status_code}")

        return self._parse_result(root)

    def _parse_result(self, root: ET.Element) -> dict[str, object]:
        out_arguments = self.out_arguments
        result: dict[str, object] = {}
        for element in root.iter():
            argument = out_arguments.get(local_name(element.tag))
            if argument is None:
                continue
            try:
                result[argument.state_variable] = argument.convert(element.text or "")
            except ValueError as e:
                raise InvocationError(
                    f"{self.name}: cannot convert {argument.name}={element.text!r} "
                    f"to {argument.data_type}"
                ) from e
        return result


@dataclass
class Service:
    service_type: str
    control_url: str
    scpd_url: str
    actions: dict[str, Action] = field(default_factory=dict)

    def lookup(self, name: str) -> Action:
        action = self.actions.get(name)
        if action is None:
            raise ActionNotFound(self.service_type, name)
        return action


@dataclass
class ServiceDirectory:
    services: dict[str, Service] = field(default_factory=dict)

    def lookup(self, service_type: str) -> Service:
        service = self.services.get(service_type)
        if service is None:
            raise ServiceNotFound(service_type)
        return service

    def __contains__(self, service_type: str) -> bool:
        return service_type in self.services


class ServiceLoader:

    def __init__(self, host: str, port: int, session: Optional[requests.Session] = None):
        self.base_url = f"http://{host}:{port}"
        self.session = session or requests.Session()

    def _get_xml(self, path: str) -> ET.Element:
        url = urljoin(self.base_url, path)
        response = self.session.get(url,
                                    headers=FRITZBOX_CLIENT_DEFAULT_HEADERS,
                                    timeout=DEFAULT_TIMEOUT)
        response.raise_for_status()
        return ET.fromstring(response.content)

    def load(self) -> ServiceDirectory:
        try:
            description = self._get_xml(IGD_DESCRIPTION)
            directory = ServiceDirectory()
            # services of the root device and of every embedded device
            for node in description.iterfind(".//{*}service"):
                service = Service(
                    service_type=(node.findtext("{*}serviceType") or "").strip(),
                    control_url=urljoin(self.base_url, (node.findtext("{*}controlURL") or "").strip()),
                    scpd_url=(node.findtext("{*}SCPDURL") or "").strip(),
                )
                self._load_actions(service)
                directory.services[service.service_type] = service
                logger.debug(f"Loaded service {service.service_type} with {len(service.actions)} actions")
        except (requests.RequestException, ET.ParseError) as e:
            raise DiscoveryError(f"unable to load services from {self.base_url}: {e}") from e
        return directory

    def _load_actions(self, service: Service) -> None:
        scpd = self._get_xml(service.scpd_url)

        data_types = {
            (var.findtext("{*}name") or "").strip(): (var.findtext("{*}dataType") or "string").strip()
            for var in scpd.iterfind(".//{*}stateVariable")
        }

        for node in scpd.iterfind(".//{*}action"):
            action = Action(
                name=(node.findtext("{*}name") or "").strip(),
                service_type=service.service_type,
                control_url=service.control_url,
                session=self.session,
            )
            for arg in node.iterfind(".//{*}argument"):
                state_variable = (arg.findtext("{*}relatedStateVariable") or "").strip()
                action.arguments.append(Argument(
                    name=(arg.findtext("{*}name") or "").strip(),
                    direction=(arg.findtext("{*}direction") or "").strip(),
                    state_variable=state_variable,
                    data_type=data_types.get(state_variable, "string"),
                ))
            service.actions[action.name] = action


def load_services(host: str, port: int, session: Optional[requests.Session] = None) -> ServiceDirectory:
    return ServiceLoader(host, port, session).load()
