# panelnode

`panelnode` keeps a proxy core in step with a management panel. It reads the node's
description and user list from the panel, turns them into inbound and outbound handler
configurations for VMess, VLESS, Trojan, Shadowsocks and Shadowsocks-Plugin nodes, adds
and removes users on the core, keeps the core's speed limiter and audit rules current, and
reports traffic, online users, audit hits and machine load back to the panel.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `panelnode.config`: the `Config`, `CertConfig` and `FallBackConfig` dataclasses, and
  `load_config(data)`, which builds a `Config` from a mapping keyed by the configuration
  file's names (`ListenIP`, `SendIP`, `UpdatePeriodic`, `CertConfig`, `EnableDNS`,
  `DNSType`, `EnableFallback`, `FallBackConfigs`, ...). Keys match case-insensitively,
  unknown keys are ignored, and values of the wrong type raise `TypeError`.
- `panelnode.models`: the records exchanged with the panel: `NodeInfo`, `UserInfo`,
  `UserTraffic`, `NodeStatus`, `OnlineUser`, `DetectRule` and `DetectResult`. They are
  frozen dataclasses; `NodeInfo.replace(**kwargs)` returns a changed copy.
- `panelnode.service`: `Service`, the abstract base with `start()` and `close()`; it can be
  used as a context manager.
- `panelnode.users`: `CipherType`, `cipher_from_string(name)`, `build_user_tag(tag, user)`
  and the `build_vmess_users`, `build_vless_users`, `build_trojan_users`,
  `build_ss_users` and `build_ss_plugin_users` helpers. Each returns `ProxyUser` entries
  whose email is `"<inbound tag>|<email>|<uid>"`. The plugin variant keeps only users with
  an AEAD cipher.
- `panelnode.inbound`: `build_inbound(config, node_info, tag, cert_provider=None)`, which
  returns the inbound configuration as a JSON-ready dict. Also `network_type`,
  `get_cert_file`, `build_vless_fallbacks` and `build_trojan_fallbacks`. Certificates in
  `file` mode come from `CertConfig`; in `dns` and `http` mode they come from a
  `CertProvider` that you implement. Invalid settings raise `BuildError`.
- `panelnode.outbound`: `build_outbound(config, node_info, tag)`, which returns the
  freedom outbound as a dict.
- `panelnode.control`: `CoreServer`, the abstract interface to a running proxy core, and
  `ProxyCore`, which wraps one to manage handlers, users, traffic counters, the limiter and
  rules. Failures raise `ControlError`.
- `panelnode.controller`: `PanelAPI`, the abstract panel client; `Controller`, a `Service`
  that ties a `PanelAPI` to a `CoreServer`; and `compare_user_list(old, new)`, which
  returns `(deleted, added)`.

## Example

```python
from panelnode.config import load_config
from panelnode.controller import Controller

config = load_config({
    "ListenIP": "0.0.0.0",
    "UpdatePeriodic": 60,
    "CertConfig": {"CertMode": "file", "CertFile": "/etc/node/cert.pem",
                   "KeyFile": "/etc/node/key.pem"},
})

with Controller(server, panel_api, config, "V2board") as controller:
    ...
```

Here `server` implements `CoreServer` and `panel_api` implements `PanelAPI`. `start()`
installs the node's handlers, users, limiter and rules. If `UpdatePeriodic` is positive, it
also starts two background threads. One runs `node_info_monitor()` and the other runs
`user_info_monitor()`, each every `UpdatePeriodic` seconds. The first run comes one
interval after the start. `close()` stops both threads. A `cert_provider` can be passed to
`Controller` for `dns`/`http` certificates, and a `system_info` callable can be passed to
replace the built-in load figures. The built-in figures are read with the standard library.

## What it does not include

The package defines the interfaces it drives, but it does not implement them:

- no proxy core (`CoreServer`);
- no client for any particular panel (`PanelAPI`);
- no ACME client (`CertProvider`).

There is no command-line program, and there is no configuration file reader beyond
`load_config` on an already parsed mapping.