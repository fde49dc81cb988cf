"""Configuration file schemas."""
from typing import List
from pydantic import BaseModel, Field


class HostConfig(BaseModel):
    """An uptime host that receives push reports."""
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class MonitorConfig(BaseModel):
    """A single configured monitor.

    Kind-specific parameters default to empty values; each monitor kind
    checks the ones it requires when it is set up.
    """
    name: str
    type: str
    host: str
    key: str
    interval: int  # seconds between evaluations

    # disk_usage
    file_system: str = ""  # Linux: mount point, Windows: drive letter
    down_threshold: int = Field(default=0, ge=0, le=100)  # percent used

    # email_ping - SMTP
    smtp_host: str = ""
    smtp_port: int = 0
    smtp_force_tls: bool = False
    smtp_sender_address: str = ""
    smtp_recipient_address: str = ""
    smtp_username: str = ""
    smtp_password: str = ""

    # email_ping - IMAP
    imap_host: str = ""
    imap_port: int = 0
    imap_force_tls: bool = False
    imap_username: str = ""
    imap_password: str = ""

    # email_ping - message
    message_subject: str = ""  # may contain {UUID}
    message_body: str = ""
    response_subject: str = ""  # may contain {ORIG_SUBJ}
    timeout: int = 0  # seconds to wait for the response


class AgentConfig(BaseModel):
    """Top level configuration file."""
    node_name: str = ""
    hosts: List[HostConfig] = Field(default_factory=list)
    monitors: List[MonitorConfig] = Field(default_factory=list)
