"""Live pod detail and the lease handed out once a pod is reachable."""

from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PodDetails(BaseModel):
    """Detailed pod read, as returned by `GET /pods/{podId}`."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    desired_status: Optional[str] = Field(default=None, alias="desiredStatus")
    image_name: Optional[str] = Field(default=None, alias="imageName")
    public_ip: Optional[str] = Field(default=None, alias="publicIp")
    port_mappings: Dict[int, int] = Field(default_factory=dict, alias="portMappings")

    @field_validator("port_mappings", mode="before")
    @classmethod
    def _drop_non_numeric_ports(cls, value):
        # The API keys mappings by container port as a string; anything
        # that isn't a port number is ignored.
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        return {
            int(k): v for k, v in value.items()
            if str(k).strip().isdigit()
        }


class PodLease(BaseModel):
    """A resolved, reachable handle to a ready pod."""

    id: str
    name: str
    public_ip: str
    port_mappings: Dict[int, int]               # container port -> public port
    desired_status: str

    def tcp_endpoint(self, container_port: int) -> Optional[Tuple[str, int]]:
        public_port = self.port_mappings.get(container_port)
        if public_port is None:
            return None
        return self.public_ip, public_port

    def ssh_endpoint(self) -> Optional[Tuple[str, int]]:
        return self.tcp_endpoint(22)

    def http_endpoint(self, container_port: int) -> Optional[str]:
        endpoint = self.tcp_endpoint(container_port)
        if endpoint is None:
            return None
        return f"http://{endpoint[0]}:{endpoint[1]}"

    def jupyter_endpoint(self) -> Optional[str]:
        return self.http_endpoint(8888)
