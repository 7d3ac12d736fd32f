# portshare

`portshare` holds the application logic for sharing local HTTP/HTTPS services
and pairing machines directly over a Tailscale network. It provides
controllers, data models and status-text helpers that a front end can build on.

## Installation

```
pip install .
```

The tests use pytest. They are installed with the `test` extra.

## Modules

- `portshare.models` defines the frozen dataclasses and enums that the
  controllers share. Among them are `LocalService`, `Share`, `ShareMode`,
  `TrustedPeer`, `ReadyState`, `PeerPathReport`, `EgressCandidate`,
  `ActiveBypass`, `LinkResult`, `DiscoveryReport`, `ProxyNode`,
  `ApplyRequest` and `ApplyResult`.
- `portshare.controller` has `Controller`. It collects local services from a
  `Discovery`, publishes the selected one to the tailnet or the public
  internet through a `Manager`, stops shares, and reports a `State` snapshot
  of `ServiceItem`s. `normalize_local_url` checks a typed address such as
  `"127.0.0.1:5173"` and turns it into `"http://127.0.0.1:5173"`.
  `public_choice_for` maps a duration label (`"10 分钟"`, `"30 分钟"`,
  `"1 小时"`, `"长期开放"`) to a `PublicChoice`. `DiscoveryFuncs` builds a
  `Discovery` from plain callables.
- `portshare.direct_controller` has `DirectController`, which works through a
  `DirectManager`. It starts and stops the direct-connection control server,
  pairs peers (with or without first starting the server with a shared
  secret), removes trusted peers, switches the localhost bridge, detects the
  network path to a peer, applies and clears a route bypass, optimises the
  link, probes peer latencies, and detects, refreshes, applies and restores
  proxy (Clash/TUN) exit nodes. `state()` returns a `DirectState` copy that
  callers may change freely.
- `portshare.peer_address` normalises peer control addresses.
  `normalize_peer_control_address("100.64.0.1")` returns `"100.64.0.1:17890"`,
  and IPv6 hosts are bracketed. Bad input raises `PeerAddressRequiredError` or
  `PeerAddressInvalidError`. `describe_pair_error` turns low-level pairing
  failures (DNS, refused, timeout, authentication) into a `PairingError` that
  the user can act on.
- `portshare.presentation` renders a `DirectState` as status lines and option
  lists, for example `compact_status_summary_text`,
  `egress_candidate_options` and `clash_node_options`. It also holds the rules
  for selecting peers (`reconcile_selected_peer`, `can_remove_selected_peer`),
  `generate_pairing_secret()`, which returns 20 random letters in hyphenated
  groups of four, and `PeerLatencyRefresher`, a background ticker that you
  start and stop.
- `portshare.icon`: `icon_resource()` returns the 16×16 PNG application icon
  as an `IconResource`.
- `portshare.winexec`: `new_command(name, *args)` builds a `Command`, which
  can `start()` or `run(timeout)` a child process. On Windows the child runs
  without a console window.

## Example

```python
from portshare.controller import Controller, Dependencies, public_choice_for

ctrl = Controller(Dependencies(manager=my_manager, discovery=my_discovery))
ctrl.refresh()
ctrl.publish_public(public_choice_for("1 小时"))
print(ctrl.state().message)
```

Controller methods raise exceptions when they fail. They also record a
message for the user, and the next `state()` snapshot carries it.

## What this package does not do

- It has no window, no tray menu and no command-line program. The
  controllers and text helpers are meant to be driven by a front end that
  you write.
- It has no implementations of `Manager`, `Discovery` or `DirectManager`. The
  package does not scan ports, publish shares, run a control server, change
  routes or talk to a proxy client on its own. You supply objects that do
  this work.