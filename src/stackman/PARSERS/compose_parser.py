# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parsers for Docker Compose YAML files.
"""
import logging
import os
import re
import shlex
import sys
from typing import Dict, Any, List, Optional, Sequence

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..LABELS.keys import STDIN_MARKER
from ..MODELS.project import NetworkConfig, Project, VolumeConfig, normalize_project_name
from ..MODELS.service_definition import (
    BuildConfig,
    ServiceDefinition,
    ServiceNetworkConfig,
    ServicePort,
    ServiceVolume,
    VolumeType,
)
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

DEFAULT_FILENAMES = ["compose.yaml", "compose.yml", "docker-compose.yml", "docker-compose.yaml"]

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s|us)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001, "us": 0.000001}


def parse_duration(value: Any) -> Optional[float]:
    """
    Parses a compose duration such as "1m30s" into seconds.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    matches = _DURATION_RE.findall(text)
    if not matches or "".join(n + u for n, u in matches) != text:
        raise ConfigurationError(f"invalid duration {value!r}")
    return sum(float(n) * _DURATION_UNITS[u] for n, u in matches)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merges two compose documents; mappings merge recursively, anything else is replaced.
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, environment: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment for interpolation.

        :param environment: Variables for interpolation; defaults to the process environment.
        """
        self.environment = dict(os.environ) if environment is None else dict(environment)

    def parse(self, compose_path: str, project_name: Optional[str] = None) -> Project:
        """
        Parses a single compose file, using its directory as the working directory.

        :param compose_path: Path to the compose file.
        :param project_name: Overrides the derived project name.
        :return: Parsed project.
        """
        compose_path = os.path.abspath(compose_path)
        return self.load([compose_path], os.path.dirname(compose_path), project_name)

    def parse_from_string(self, content: str, working_dir: str = ".", project_name: Optional[str] = None) -> Project:
        """
        Parses a compose document given as a string, as if read from stdin.

        :param content: YAML content of the compose file.
        :param working_dir: Directory relative paths resolve against.
        :param project_name: Overrides the derived project name.
        :return: Parsed project.
        """
        working_dir = os.path.abspath(working_dir)
        data = self._read_document(content, STDIN_MARKER)
        return self._build_project(data, working_dir, [STDIN_MARKER], project_name)

    def load(
        self,
        config_files: Sequence[str],
        working_dir: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> Project:
        """
        Loads and merges compose files into a project. Later files override earlier ones.

        :param config_files: Paths, relative to the working directory, or "-" for stdin.
            Empty means the first default file name found in the working directory.
        :param working_dir: Defaults to the directory of the first file.
        :param project_name: Overrides the derived project name.
        :return: Parsed project.
        :raises ConfigurationError: If a file is missing or invalid.
        """
        files = list(config_files)
        if working_dir is None:
            # Without a working directory, relative paths are relative to the current one.
            files = [f if f == STDIN_MARKER else os.path.abspath(f) for f in files]
            first = next((f for f in files if f != STDIN_MARKER), None)
            working_dir = os.path.dirname(os.path.abspath(first)) if first else os.getcwd()
        working_dir = os.path.abspath(working_dir)

        if not files:
            files = [self._find_default_file(working_dir)]

        merged: Dict[str, Any] = {}
        recorded: List[str] = []
        for path in files:
            if path == STDIN_MARKER:
                content = sys.stdin.read()
                recorded.append(STDIN_MARKER)
            else:
                path = path if os.path.isabs(path) else os.path.join(working_dir, path)
                try:
                    with open(path, "r") as f:
                        content = f.read()
                except OSError as e:
                    raise ConfigurationError(f"cannot read {path}: {e.strerror}") from e
                recorded.append(path)
            merged = _merge(merged, self._read_document(content, path))
        return self._build_project(merged, working_dir, recorded, project_name)

    def _find_default_file(self, working_dir: str) -> str:
        for name in DEFAULT_FILENAMES:
            candidate = os.path.join(working_dir, name)
            if os.path.exists(candidate):
                return candidate
        raise ConfigurationError(
            f"no configuration file provided: none of {', '.join(DEFAULT_FILENAMES)} found in {working_dir}"
        )

    def _read_document(self, content: str, source: str) -> Dict[str, Any]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"{source}: invalid YAML: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{source}: top level object must be a mapping")
        return data

    def _context(self, working_dir: str) -> Dict[str, str]:
        """
        Interpolation variables: the working directory's .env file, overridden by the environment.
        """
        context: Dict[str, str] = {}
        env_path = os.path.join(working_dir, ".env")
        if os.path.isfile(env_path):
            context.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
        context.update(self.environment)
        return context

    def _project_name(self, explicit: Optional[str], data: Dict[str, Any], working_dir: str, context: Dict[str, str]) -> str:
        for candidate in (
            explicit,
            data.get("name"),
            context.get("STACKMAN_PROJECT_NAME"),
            os.path.basename(working_dir.rstrip(os.sep)),
        ):
            if candidate:
                name = normalize_project_name(str(candidate))
                if name:
                    return name
        raise ConfigurationError(f"cannot derive a project name from {working_dir!r}; pass one explicitly")

    def _build_project(
        self,
        data: Dict[str, Any],
        working_dir: str,
        config_files: List[str],
        project_name: Optional[str],
    ) -> Project:
        context = self._context(working_dir)
        data = EnvironmentInterpolator.interpolate_all(data, context)
        name = self._project_name(project_name, data, working_dir, context)

        networks = {
            key: self._parse_network(name, key, spec)
            for key, spec in self._section(data, "networks").items()
        }
        volumes = {
            key: self._parse_volume(name, key, spec)
            for key, spec in self._section(data, "volumes").items()
        }

        services_spec = self._section(data, "services")
        services = {}
        for service_name, spec in services_spec.items():
            services[service_name] = self._parse_service(service_name, spec or {}, working_dir, context)

        needs_default = any(not s.network_mode and not s.networks for s in services.values())
        if needs_default and "default" not in networks:
            networks["default"] = NetworkConfig(name=f"{name}_default")

        for service in services.values():
            self._resolve_references(service, networks, volumes)

        try:
            return Project(
                name=name,
                services=services,
                networks=networks,
                volumes=volumes,
                working_dir=working_dir,
                config_files=config_files,
            )
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    def _section(self, data: Dict[str, Any], key: str) -> Dict[str, Dict[str, Any]]:
        """
        A top level mapping whose entries are mappings themselves (or empty).
        """
        section = data.get(key) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"{key} must be a mapping")
        for name, spec in section.items():
            if spec is not None and not isinstance(spec, dict):
                raise ConfigurationError(f"{key}.{name} must be a mapping")
        return {str(name): spec or {} for name, spec in section.items()}

    def _parse_network(self, project_name: str, key: str, spec: Dict[str, Any]) -> NetworkConfig:
        external, name = self._external(spec)
        ipam = spec.get("ipam") or {}
        return NetworkConfig(
            name=spec.get("name") or name or (key if external else f"{project_name}_{key}"),
            driver=spec.get("driver"),
            driver_opts=self._str_dict(spec.get("driver_opts")),
            external=external,
            internal=bool(spec.get("internal", False)),
            attachable=bool(spec.get("attachable", False)),
            labels=self._labels(spec.get("labels")),
            ipam_driver=ipam.get("driver"),
            ipam_subnets=[c["subnet"] for c in ipam.get("config") or [] if c.get("subnet")],
        )

    def _parse_volume(self, project_name: str, key: str, spec: Dict[str, Any]) -> VolumeConfig:
        external, name = self._external(spec)
        return VolumeConfig(
            name=spec.get("name") or name or (key if external else f"{project_name}_{key}"),
            driver=spec.get("driver"),
            driver_opts=self._str_dict(spec.get("driver_opts")),
            external=external,
            labels=self._labels(spec.get("labels")),
        )

    def _external(self, spec: Dict[str, Any]):
        external = spec.get("external", False)
        if isinstance(external, dict):
            # Legacy form: external: {name: foo}
            return True, external.get("name")
        return bool(external), None

    def _resolve_references(
        self,
        service: ServiceDefinition,
        networks: Dict[str, NetworkConfig],
        volumes: Dict[str, VolumeConfig],
    ) -> None:
        for key in service.networks:
            if key not in networks:
                raise ConfigurationError(f"Service {service.name} uses an undefined network {key}")
        for mount in service.volumes:
            if mount.type != VolumeType.VOLUME or not mount.source:
                continue
            if mount.source not in volumes:
                raise ConfigurationError(f"Service {service.name} refers to undefined volume {mount.source}")
            mount.source = volumes[mount.source].name

    def _parse_service(self, name: str, spec: Dict[str, Any], working_dir: str, context: Dict[str, str]) -> ServiceDefinition:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDefinition instance.
        """
        if not isinstance(spec, dict):
            raise ConfigurationError(f"Service {name} must be a mapping")

        try:
            environment: Dict[str, str] = {}
            for env_file in self._to_list(spec.get("env_file")):
                path = env_file.get("path") if isinstance(env_file, dict) else env_file
                path = os.path.join(working_dir, path)
                if not os.path.isfile(path):
                    raise ConfigurationError(f"Service {name}: env file {path} not found")
                environment.update({k: v for k, v in dotenv_values(path).items() if v is not None})
            environment.update(self._environment(spec.get("environment"), context))

            deploy = spec.get("deploy") or {}
            scale = spec.get("scale", deploy.get("replicas", 1))

            volumes = [self._parse_volume_mount(name, v) for v in spec.get("volumes") or []]
            for tmpfs in self._to_list(spec.get("tmpfs")):
                volumes.append(ServiceVolume(type=VolumeType.TMPFS, target=tmpfs.split(":", 1)[0]))

            return ServiceDefinition(
                name=name,
                image=spec.get("image"),
                build=self._parse_build(spec.get("build")),
                command=self._command(spec.get("command")),
                entrypoint=self._command(spec.get("entrypoint")),
                working_dir=spec.get("working_dir"),
                user=self._opt_str(spec.get("user")),
                tty=bool(spec.get("tty", False)),
                stdin_open=bool(spec.get("stdin_open", False)),
                init=spec.get("init"),
                stop_signal=spec.get("stop_signal"),
                stop_grace_period=parse_duration(spec.get("stop_grace_period")),
                environment=environment,
                ports=[p for raw in spec.get("ports") or [] for p in self._parse_ports(name, raw)],
                networks=self._parse_service_networks(spec.get("networks")),
                network_mode=spec.get("network_mode"),
                hostname=spec.get("hostname"),
                domainname=spec.get("domainname"),
                links=self._to_list(spec.get("links")),
                volumes=volumes,
                volumes_from=self._to_list(spec.get("volumes_from")),
                ipc=spec.get("ipc"),
                cap_add=self._to_list(spec.get("cap_add")),
                cap_drop=self._to_list(spec.get("cap_drop")),
                read_only=bool(spec.get("read_only", False)),
                sysctls=self._labels(spec.get("sysctls")),
                depends_on=list(spec["depends_on"]) if spec.get("depends_on") else [],
                scale=int(scale),
                container_name=spec.get("container_name"),
                labels=self._labels(spec.get("labels")),
                extensions={str(k): v for k, v in spec.items() if str(k).startswith("x-")},
            )
        except (ValidationError, AttributeError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Service {name}: {e}") from e

    def _parse_build(self, build: Any) -> Optional[BuildConfig]:
        if build is None:
            return None
        if isinstance(build, str):
            return BuildConfig(context=build)
        args = build.get("args") or {}
        if isinstance(args, list):
            args = dict(a.split("=", 1) if "=" in a else (a, "") for a in args)
        return BuildConfig(
            context=build.get("context", "."),
            dockerfile=build.get("dockerfile"),
            args=self._str_dict(args),
        )

    def _parse_service_networks(self, networks: Any) -> Dict[str, Optional[ServiceNetworkConfig]]:
        if not networks:
            return {}
        if isinstance(networks, list):
            return {n: None for n in networks}
        return {
            key: ServiceNetworkConfig(aliases=self._to_list((cfg or {}).get("aliases"))) if cfg else None
            for key, cfg in networks.items()
        }

    def _parse_volume_mount(self, service_name: str, v: Any) -> ServiceVolume:
        if isinstance(v, dict):
            if "target" not in v:
                raise ConfigurationError(f"Service {service_name}: volume {v!r} has no target")
            return ServiceVolume(
                type=v.get("type", "volume"),
                source=v.get("source"),
                target=v["target"],
                read_only=bool(v.get("read_only", False)),
            )
        parts = str(v).split(":")
        if len(parts) == 1:
            return ServiceVolume(type=VolumeType.VOLUME, target=parts[0])
        if len(parts) > 3:
            raise ConfigurationError(f"Service {service_name}: invalid volume specification {v!r}")
        source, target = parts[0], parts[1]
        read_only = len(parts) == 3 and "ro" in parts[2].split(",")
        is_path = source.startswith((".", "/", "~"))
        return ServiceVolume(
            type=VolumeType.BIND if is_path else VolumeType.VOLUME,
            source=source,
            target=target,
            read_only=read_only,
        )

    def _parse_ports(self, service_name: str, p: Any) -> List[ServicePort]:
        if isinstance(p, int):
            return [ServicePort(target=p)]
        if isinstance(p, dict):
            published = p.get("published")
            return [ServicePort(
                target=int(p["target"]),
                published=int(published) if published not in (None, "") else None,
                protocol=p.get("protocol", "tcp"),
                host_ip=p.get("host_ip"),
            )]

        spec, _, protocol = str(p).partition("/")
        parts = spec.rsplit(":", 2)
        host_ip = None
        if len(parts) == 3:
            host_ip, published, target = parts
        elif len(parts) == 2:
            published, target = parts
        else:
            published, target = "", parts[0]

        targets = self._port_range(service_name, target)
        published_ports = self._port_range(service_name, published) if published else [None] * len(targets)
        if len(published_ports) != len(targets):
            raise ConfigurationError(f"Service {service_name}: port ranges don't match in {p!r}")
        return [
            ServicePort(target=t, published=h, protocol=protocol or "tcp", host_ip=host_ip or None)
            for t, h in zip(targets, published_ports)
        ]

    def _port_range(self, service_name: str, value: str) -> List[int]:
        try:
            if "-" in value:
                start, end = value.split("-", 1)
                return list(range(int(start), int(end) + 1))
            return [int(value)]
        except ValueError:
            raise ConfigurationError(f"Service {service_name}: invalid port {value!r}") from None

    def _environment(self, env_spec: Any, context: Dict[str, str]) -> Dict[str, str]:
        environment: Dict[str, str] = {}
        if isinstance(env_spec, list):
            for e in env_spec:
                if "=" in e:
                    k, v = e.split("=", 1)
                    environment[k] = v
                elif e in context:
                    # Bare names are passed through from the environment
                    environment[e] = context[e]
        elif isinstance(env_spec, dict):
            for k, v in env_spec.items():
                if v is None:
                    if k in context:
                        environment[k] = context[k]
                else:
                    environment[k] = self._scalar(v)
        return environment

    def _labels(self, labels: Any) -> Dict[str, str]:
        if not labels:
            return {}
        if isinstance(labels, list):
            return dict(l.split("=", 1) if "=" in l else (l, "") for l in labels)
        return self._str_dict(labels)

    def _str_dict(self, value: Any) -> Dict[str, str]:
        return {str(k): self._scalar(v) for k, v in (value or {}).items()}

    def _scalar(self, value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return "" if value is None else str(value)

    def _opt_str(self, value: Any) -> Optional[str]:
        return None if value is None else str(value)

    def _command(self, val: Any) -> List[str]:
        if isinstance(val, str):
            return shlex.split(val)
        return [str(v) for v in self._to_list(val)]

    def _to_list(self, val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, (str, dict)):
            return [val]
        return list(val)
