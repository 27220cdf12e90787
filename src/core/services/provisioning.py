"""Provisioning helpers.

Step-by-step building blocks for standing up an organization on the console:
create a CA and wait for it, enroll its admin, register identities, import the
MSP, build crypto objects and create peers/orderers. Each helper logs a
`**SUCCESS**` / `**ERROR**` line and re-raises failures; none of them exit the
process.

Certificates sent to the console are base64 encoded PEMs.
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlsplit

import httpx

from adapters.ca_client import (
    CaClient,
    EnrollmentRequest,
    EnrollmentResponse,
    Identity,
    RegistrationRequest,
)
from adapters.cert_store import get_decoded_tls_cert, write_file_to_local_directory
from adapters.console_api import ConsoleClient
from adapters.http_client import resolve_verify
from core.domain.models import (
    CaCreated,
    CryptoEnrollmentComponent,
    CryptoObject,
    CryptoObjectEnrollment,
    CryptoObjectEnrollmentCa,
    CryptoObjectEnrollmentTlsca,
    MspCaField,
    MspComponentField,
    MspCryptoField,
    dump_payload,
)
from core.errors import (
    CaError,
    CertificateError,
    ConsoleApiError,
    IbpProvisionError,
    ProvisioningError,
)
from core.services.availability import PollPolicy, wait_for_ca

_logger = logging.getLogger(__name__)

CA_NAME = "ca"
TLS_CA_NAME = "tlsca"
ORDERER_TYPE_RAFT = "raft"
MAX_REGISTRATION_RETRIES = 3


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _component_id(body: Any) -> str:
    if isinstance(body, dict):
        created = body.get("created")
        if isinstance(created, list) and created and isinstance(created[0], dict):
            return str(created[0].get("id", ""))
        return str(body.get("id", ""))
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return str(body[0].get("id", ""))
    return ""


# -- certificate authority ---------------------------------------------------


def build_ca_config_override(username: str, password: str) -> dict[str, Any]:
    """Registry with one bootstrap identity allowed to register anything."""

    identity = {
        "name": username,
        "pass": password,
        "type": "client",
        "attrs": {
            "hf.Registrar.Roles": "*",
            "hf.Registrar.Attributes": "*",
        },
    }
    return {"ca": {"registry": {"maxenrollments": -1, "identities": [identity]}}}


def create_ca(
    console: ConsoleClient,
    display_name: str,
    username: str,
    password: str,
    *,
    policy: PollPolicy | None = None,
    poll_client: httpx.Client | None = None,
    cancel_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> CaCreated:
    """Create a CA and block until its `/cainfo` endpoint answers."""

    log = logger or _logger
    policy = policy or PollPolicy()
    log.info("creating a CA")
    try:
        response = console.create_ca(display_name, build_ca_config_override(username, password))
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem creating CA: %s", exc)
        raise
    created = CaCreated.from_response(response.body if isinstance(response.body, dict) else {})
    if not created.api_url or not created.tls_cert:
        raise ProvisioningError(f"create CA response for {display_name!r} lacks api_url or tls_cert")
    log.info("**SUCCESS** - CA created")
    log.debug("CA's api url: %s", created.api_url)
    log.debug("CA's ID: %s", created.id)
    log.debug("CA's DepComponentID: %s", created.dep_component_id)

    # The CA serves a self-signed TLS cert; trust exactly that one while polling.
    try:
        verify = resolve_verify(
            insecure=policy.insecure,
            ca_cert_data=get_decoded_tls_cert(created.tls_cert, logger=log),
        )
    except CertificateError as exc:
        log.error("**ERROR** - problem loading the CA tls cert: %s", exc)
        raise
    wait_for_ca(
        created.api_url,
        policy=policy,
        client=poll_client,
        verify=verify,
        cancel_event=cancel_event,
        logger=log,
    )
    return created


def create_client(
    tls_cert_path: Path | str,
    api_url: str,
    ca_name: str,
    *,
    logger: logging.Logger | None = None,
    **kwargs: Any,
) -> CaClient:
    """CA client with TLS enabled, trusting the cert written to `tls_cert_path`."""

    log = logger or _logger
    log.info("creating the config to enroll the CA")
    client = CaClient(api_url, ca_name, tls_cert_path=tls_cert_path, **kwargs)
    log.info("**SUCCESS** - client created")
    return client


def enroll_ca(
    client: CaClient,
    name: str,
    secret: str,
    *,
    logger: logging.Logger | None = None,
) -> EnrollmentResponse:
    log = logger or _logger
    log.info("enrolling the CA admin")
    try:
        response = client.enroll(EnrollmentRequest(name=name, secret=secret))
    except CaError as exc:
        log.error("**ERROR** - failed to enroll with CA: %s", exc)
        raise
    log.info("**SUCCESS** - CA enrolled without error")
    return response


# -- identities ----------------------------------------------------------------


def remove_identity(
    name: str,
    enroll_resp: EnrollmentResponse,
    *,
    logger: logging.Logger | None = None,
) -> bool:
    """Force-remove an identity; failures are logged, not raised."""

    log = logger or _logger
    try:
        result = enroll_resp.identity.remove_identity(name, force=True)
    except CaError as exc:
        log.error("**ERROR** - problem removing identity for %s: %s", name, exc)
        return False
    log.info("**SUCCESS** - the identity for %s was deleted. Response: %s", name, result)
    return True


def remove_identity_if_registered(
    name: str,
    error: CaError,
    enroll_resp: EnrollmentResponse,
    retries: int,
    *,
    logger: logging.Logger | None = None,
) -> bool:
    """True when `error` means "already registered" and the identity was dropped."""

    log = logger or _logger
    if not error.already_registered or retries >= MAX_REGISTRATION_RETRIES:
        return False
    log.info("the identity %s was already registered. trying again to remove it", name)
    remove_identity(name, enroll_resp, logger=log)
    return True


def register_and_enroll_admin(
    enroll_resp: EnrollmentResponse,
    name: str,
    secret: str,
    *,
    retries: int = 1,
    logger: logging.Logger | None = None,
) -> Identity:
    log = logger or _logger
    log.info("registering and enrolling %s", name)
    request = RegistrationRequest(name=name, secret=secret, type="admin")
    while True:
        try:
            identity = enroll_resp.identity.register_and_enroll(request)
        except CaError as exc:
            if remove_identity_if_registered(name, exc, enroll_resp, retries, logger=log):
                retries += 1
                continue
            log.error("**ERROR** - problem registering and enrolling %s: %s", name, exc)
            raise
        log.info("**SUCCESS** - %s registered", name)
        return identity


def register_admin(
    enroll_resp: EnrollmentResponse,
    identity_type: str,
    name: str,
    secret: str,
    *,
    retries: int = 1,
    logger: logging.Logger | None = None,
) -> str:
    """Register `name` as `identity_type`; returns the enrollment secret."""

    log = logger or _logger
    log.info("registering admin for %s", name)
    request = RegistrationRequest(name=name, secret=secret, type=identity_type)
    while True:
        try:
            registered_secret = enroll_resp.identity.register(request)
        except CaError as exc:
            if remove_identity_if_registered(name, exc, enroll_resp, retries, logger=log):
                retries += 1
                continue
            log.error("**ERROR** - problem registering %s: %s", name, exc)
            raise
        log.info("**SUCCESS** - %s admin was registered", name)
        return registered_secret


# -- MSP and nodes -------------------------------------------------------------


def create_or_import_msp(
    tls_cert: bytes,
    identity: Identity,
    console: ConsoleClient,
    display_name: str,
    msp_id: str,
    *,
    logger: logging.Logger | None = None,
) -> str:
    """Import the MSP definition with `identity` as admin; returns the MSP component id."""

    log = logger or _logger
    log.info("creating/importing the msp definition for %s", identity.name)
    log.info("The MSP ID is: %s", msp_id)
    try:
        response = console.import_msp(
            msp_id,
            display_name,
            [_b64(tls_cert)],
            admins=[_b64(identity.cert_pem)],
        )
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem importing MSP: %s", exc)
        raise
    log.info("**SUCCESS** - created/imported MSP definition")
    return _component_id(response.body)


def create_crypto_object(
    api_url: str,
    enroll_id: str,
    enroll_secret: str,
    tls_cert: bytes,
    identity: Identity,
    *,
    logger: logging.Logger | None = None,
) -> CryptoObject:
    """Enrollment crypto for a peer/orderer, pointing at the CA behind `api_url`."""

    log = logger or _logger
    parsed = urlsplit(api_url)
    try:
        port = parsed.port
    except ValueError as exc:
        log.error("**ERROR** - problem parsing the api url %s: %s", api_url, exc)
        raise ProvisioningError(f"invalid api url {api_url!r}: {exc}") from exc
    if not parsed.hostname or port is None:
        log.error("**ERROR** - problem getting the port from the url. url: %s", api_url)
        raise ProvisioningError(f"api url {api_url!r} must include a host and a port")

    ca_tls_cert = _b64(tls_cert)
    coordinates = {
        "host": parsed.hostname,
        "port": float(port),
        "tls_cert": ca_tls_cert,
        "enroll_id": enroll_id,
        "enroll_secret": enroll_secret,
    }
    enrollment = CryptoObjectEnrollment(
        component=CryptoEnrollmentComponent(admincerts=[_b64(identity.cert_pem)]),
        ca=CryptoObjectEnrollmentCa(name=CA_NAME, **coordinates),
        tlsca=CryptoObjectEnrollmentTlsca(name=TLS_CA_NAME, **coordinates),
    )
    return CryptoObject(enrollment=enrollment)


def create_peer(
    console: ConsoleClient,
    crypto: CryptoObject,
    msp_id: str,
    display_name: str,
    *,
    logger: logging.Logger | None = None,
) -> str:
    log = logger or _logger
    try:
        response = console.create_peer(msp_id, display_name, crypto)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem creating the peer: %s", exc)
        raise
    log.info("**SUCCESS** - %s created", display_name)
    return _component_id(response.body)


def create_orderer(
    console: ConsoleClient,
    crypto: list[CryptoObject],
    msp_id: str,
    display_name: str,
    *,
    logger: logging.Logger | None = None,
) -> str:
    log = logger or _logger
    try:
        response = console.create_orderer(ORDERER_TYPE_RAFT, msp_id, display_name, crypto)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem creating the orderer: %s", exc)
        raise
    log.info("**SUCCESS** - %s created", display_name)
    return _component_id(response.body)


# -- component maintenance -------------------------------------------------------


def delete_all_components(console: ConsoleClient, *, logger: logging.Logger | None = None) -> None:
    log = logger or _logger
    log.info("deleting all components")
    try:
        console.delete_all_components()
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem deleting all components: %s", exc)
        raise
    log.info("**SUCCESS** - all components were deleted")


def get_component_data(console: ConsoleClient, component_id: str, *, logger: logging.Logger | None = None) -> int:
    log = logger or _logger
    try:
        response = console.get_component(component_id)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem getting component data: %s", exc)
        raise
    log.info("Retrieved component data's detailed response status code: %d", response.status_code)
    return response.status_code


def _msp_field(tls_cert: bytes, *, ca_name: str, tlsca_name: str, with_admin: bool) -> MspCryptoField:
    root_cert = _b64(tls_cert)
    component = MspComponentField(tls_cert=root_cert)
    if with_admin:
        component = MspComponentField(tls_cert=root_cert, ecert=root_cert, admin_certs=[root_cert])
    return MspCryptoField(
        ca=MspCaField(name=ca_name, root_certs=[root_cert]),
        tlsca=MspCaField(name=tlsca_name, root_certs=[root_cert]),
        component=component,
    )


def import_ca(
    console: ConsoleClient,
    display_name: str,
    api_url: str,
    tls_cert: bytes,
    *,
    logger: logging.Logger | None = None,
) -> int:
    log = logger or _logger
    msp = _msp_field(tls_cert, ca_name=CA_NAME, tlsca_name=TLS_CA_NAME, with_admin=False)
    try:
        response = console.import_ca(display_name, api_url, dump_payload(msp))
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem importing CA %s: %s", display_name, exc)
        raise
    log.info("response statusCode: %d", response.status_code)
    return response.status_code


def remove_imported_component(console: ConsoleClient, component_id: str, *, logger: logging.Logger | None = None) -> int:
    log = logger or _logger
    try:
        response = console.remove_component(component_id)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem removing imported component %s: %s", component_id, exc)
        raise
    log.info("response statusCode: %d", response.status_code)
    return response.status_code


def delete_component(console: ConsoleClient, component_id: str, *, logger: logging.Logger | None = None) -> int:
    log = logger or _logger
    try:
        response = console.delete_component(component_id)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem deleting %s: %s", component_id, exc)
        raise
    return response.status_code


def update_ca(
    console: ConsoleClient,
    component_id: str,
    tls_cert: bytes,
    *,
    logger: logging.Logger | None = None,
) -> int:
    log = logger or _logger
    pem = tls_cert.decode("utf-8")
    config_override = {
        "ca": {
            "cors": {"enabled": True, "origins": ["us-south"]},
            "debug": True,
            "crlsizelimit": 1025,
            "tls": {"keyfile": pem, "certfile": pem},
        }
    }
    try:
        response = console.update_ca(component_id, config_override)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem updating CA %s: %s", component_id, exc)
        raise
    return response.status_code


def edit_data_about_ca(console: ConsoleClient, component_id: str, *, logger: logging.Logger | None = None) -> int:
    log = logger or _logger
    try:
        response = console.edit_ca(
            component_id,
            ca_name="My Ca Edited",
            tags=["fabric-ca", "ibm_sass", "blue_team", "dev"],
        )
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem editing data about CA: %s", exc)
        raise
    log.info("**SUCCESS** - edited data about a CA")
    return response.status_code


def submit_action_to_ca(console: ConsoleClient, component_id: str, *, logger: logging.Logger | None = None) -> int:
    log = logger or _logger
    try:
        response = console.ca_action(component_id, restart=True)
    except ConsoleApiError as exc:
        log.error("**ERROR** problem restarting CA (SubmitActionToCA API): %s", exc)
        raise
    log.info("**SUCCESS** - restarted CA (SubmitActionToCA)")
    return response.status_code


def import_a_peer(
    console: ConsoleClient,
    display_name: str,
    grpcwp_url: str,
    msp_id: str,
    tls_cert: bytes,
    *,
    logger: logging.Logger | None = None,
) -> int:
    log = logger or _logger
    msp = _msp_field(tls_cert, ca_name=CA_NAME, tlsca_name=CA_NAME, with_admin=True)
    try:
        response = console.import_peer(display_name, grpcwp_url, msp, msp_id)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem importing a peer: %s", exc)
        raise
    log.info("**SUCCESS** - imported a peer")
    return response.status_code


def edit_data_about_peer(
    console: ConsoleClient,
    component_id: str,
    *,
    display_name: str = "My Peer Edited",
    tags: list[str] | None = None,
    logger: logging.Logger | None = None,
) -> int:
    log = logger or _logger
    try:
        response = console.edit_peer(component_id, display_name=display_name, tags=tags or ["fabric-peer", "dev"])
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem editing data about peer %s: %s", component_id, exc)
        raise
    log.info("**SUCCESS** - edited data about a peer")
    return response.status_code


def submit_action_to_peer(console: ConsoleClient, component_id: str, *, logger: logging.Logger | None = None) -> int:
    log = logger or _logger
    try:
        response = console.peer_action(component_id, restart=True)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem restarting peer %s: %s", component_id, exc)
        raise
    log.info("**SUCCESS** - restarted peer")
    return response.status_code


def import_an_orderer(
    console: ConsoleClient,
    display_name: str,
    grpcwp_url: str,
    msp_id: str,
    cluster_name: str,
    tls_cert: bytes,
    *,
    logger: logging.Logger | None = None,
) -> int:
    log = logger or _logger
    msp = _msp_field(tls_cert, ca_name=CA_NAME, tlsca_name=CA_NAME, with_admin=True)
    try:
        response = console.import_orderer(cluster_name, display_name, grpcwp_url, msp, msp_id)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem importing an orderer: %s", exc)
        raise
    log.info("**SUCCESS** - imported an orderer")
    return response.status_code


def edit_data_about_orderer(
    console: ConsoleClient,
    component_id: str,
    *,
    display_name: str = "My Orderer Edited",
    tags: list[str] | None = None,
    logger: logging.Logger | None = None,
) -> int:
    log = logger or _logger
    try:
        response = console.edit_orderer(
            component_id, display_name=display_name, tags=tags or ["fabric-orderer", "dev"]
        )
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem editing data about orderer %s: %s", component_id, exc)
        raise
    log.info("**SUCCESS** - edited data about an orderer")
    return response.status_code


def submit_action_to_orderer(console: ConsoleClient, component_id: str, *, logger: logging.Logger | None = None) -> int:
    log = logger or _logger
    try:
        response = console.orderer_action(component_id, restart=True)
    except ConsoleApiError as exc:
        log.error("**ERROR** - problem restarting orderer %s: %s", component_id, exc)
        raise
    log.info("**SUCCESS** - restarted orderer")
    return response.status_code


# -- whole-organization flow ---------------------------------------------------


@dataclass
class OrganizationProfile:
    """Names and credentials for one organization."""

    ca_display_name: str
    admin_name: str
    admin_password: str
    org_admin_name: str
    org_admin_password: str
    node_type: str
    node_name: str
    node_password: str
    msp_display_name: str
    msp_id: str
    node_display_name: str


@dataclass
class OrganizationArtifacts:
    """What `provision_organization` produced."""

    ca: CaCreated
    tls_cert: bytes
    org_identity: Identity
    crypto: CryptoObject
    msp_component_id: str = ""
    node_id: str = ""
    ca_info: dict[str, Any] = field(default_factory=dict)


ORG1 = OrganizationProfile(
    ca_display_name="Org1 CA",
    admin_name="admin",
    admin_password="adminpw",
    org_admin_name="org1admin",
    org_admin_password="org1adminpw",
    node_type="peer",
    node_name="peer1",
    node_password="peer1pw",
    msp_display_name="Org1 MSP",
    msp_id="org1msp",
    node_display_name="Peer Org1",
)

ORDERING_ORG = OrganizationProfile(
    ca_display_name="Ordering Service CA",
    admin_name="admin",
    admin_password="adminpw",
    org_admin_name="OSadmin",
    org_admin_password="OSadminpw",
    node_type="orderer",
    node_name="OS1",
    node_password="OS1pw",
    msp_display_name="Ordering Service MSP",
    msp_id="osmsp",
    node_display_name="Ordering Service MSP",
)


def provision_organization(
    console: ConsoleClient,
    org: OrganizationProfile,
    *,
    cert_path: Path | str,
    policy: PollPolicy | None = None,
    poll_client: httpx.Client | None = None,
    ca_client_factory: Callable[..., CaClient] = create_client,
    logger: logging.Logger | None = None,
) -> OrganizationArtifacts:
    """CA -> cert file -> enroll -> register admins -> MSP -> crypto object."""

    log = logger or _logger
    created = create_ca(
        console,
        org.ca_display_name,
        org.admin_name,
        org.admin_password,
        policy=policy,
        poll_client=poll_client,
        logger=log,
    )
    tls_cert = get_decoded_tls_cert(created.tls_cert, logger=log)
    write_file_to_local_directory(cert_path, tls_cert, logger=log)

    client = ca_client_factory(cert_path, created.api_url, org.ca_display_name, logger=log)
    try:
        enrollment = enroll_ca(client, org.admin_name, org.admin_password, logger=log)
        org_identity = register_and_enroll_admin(
            enrollment, org.org_admin_name, org.org_admin_password, logger=log
        )
        register_admin(enrollment, org.node_type, org.node_name, org.node_password, logger=log)
    finally:
        client.close()

    msp_component_id = create_or_import_msp(
        tls_cert, org_identity, console, org.msp_display_name, org.msp_id, logger=log
    )
    crypto = create_crypto_object(
        created.api_url, org.node_name, org.node_password, tls_cert, org_identity, logger=log
    )
    return OrganizationArtifacts(
        ca=created,
        tls_cert=tls_cert,
        org_identity=org_identity,
        crypto=crypto,
        msp_component_id=msp_component_id,
        ca_info=enrollment.ca_info,
    )


def run_two_org_flow(
    console: ConsoleClient,
    *,
    cert_path: Path | str,
    policy: PollPolicy | None = None,
    settle_seconds: float = 15.0,
    cleanup: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    poll_client: httpx.Client | None = None,
    ca_client_factory: Callable[..., CaClient] = create_client,
    logger: logging.Logger | None = None,
) -> list[OrganizationArtifacts]:
    """Peer org + ordering org, starting (and optionally ending) with an empty console."""

    log = logger or _logger
    log.info("delete any existing components in the cluster")
    delete_all_components(console, logger=log)
    # A CA created right after a purge may fail to come up.
    log.info("wait %.0f seconds to make sure that everything was deleted", settle_seconds)
    sleep(settle_seconds)

    results: list[OrganizationArtifacts] = []
    try:
        org1 = provision_organization(
            console,
            ORG1,
            cert_path=cert_path,
            policy=policy,
            poll_client=poll_client,
            ca_client_factory=ca_client_factory,
            logger=log,
        )
        org1.node_id = create_peer(console, org1.crypto, ORG1.msp_id, ORG1.node_display_name, logger=log)
        results.append(org1)

        ordering = provision_organization(
            console,
            ORDERING_ORG,
            cert_path=cert_path,
            policy=policy,
            poll_client=poll_client,
            ca_client_factory=ca_client_factory,
            logger=log,
        )
        ordering.node_id = create_orderer(
            console, [ordering.crypto], ORDERING_ORG.msp_id, ORDERING_ORG.node_display_name, logger=log
        )
        results.append(ordering)
    except IbpProvisionError:
        log.error("***UNSUCCESSFUL*** one or more errors occurred")
        raise
    finally:
        if cleanup:
            log.info("finally, delete any existing components in the cluster")
            delete_all_components(console, logger=log)

    log.info("**SUCCESS** - flow completed")
    return results
