# phantom

Building blocks for a UDP tunnel server, in pure Python.

- **Congestion control** (`phantom.congestion`)
  - `hysteria2.Hysteria2Controller`: a Hysteria2-style controller that starts in an aggressive "brutal" mode and falls back to slow start / congestion avoidance / recovery / bandwidth probing when loss or RTT grows.
  - `rtt.RTTEstimator`: RFC 6298 smoothed RTT, RTT variance, minimum/maximum RTT and RTO.
  - `pacer.Pacer`: a token-bucket pacer.
  - `bandwidth.BandwidthEstimator`: bottleneck bandwidth from delivery-rate samples.
  - `loss_estimator.LossEstimator`: a loss-rate estimator combining three EWMAs, three sliding windows (`SlidingWindow`) and burst detection (`BurstDetector`).
  - `adapter.CongestionAdapter`: maps 32-bit ARQ sequence numbers (with wraparound, see `seq_less_than` and `seq_in_range`) onto controller packet numbers, with cumulative and selective ACK handling.
  - `types`: `CongestionState`, `LossReason`, `CongestionStats` and other records.
- **Crypto** (`phantom.crypto`)
  - `cipher.PacketCipher`: ChaCha20-Poly1305 packet encryption with keys derived by HKDF-SHA256 per time window from a pre-shared key; `cipher.generate_psk()` makes a new key.
  - `replay.ReplayGuard`: nonce replay protection using 18 time-sliced Bloom filters (`replay.BloomFilter`) of 10 seconds each, backed by an exact cache of recent nonce hashes.
- **Configuration** (`phantom.config`)
  - Loads YAML, lays it over the defaults, validates it (ranges, port conflicts, tunnel port, ARQ settings) and fills in related settings.

All durations are in seconds, sizes in bytes and rates in bytes per second. Every time-dependent class accepts an optional `clock` callable, so it can be driven by a fake clock in tests.

## Installation

```
pip install .
```

## Encrypting packets

```python
from phantom.crypto.cipher import CryptoError, PacketCipher, generate_psk

psk = generate_psk()                    # base64 text of 32 random bytes
cipher = PacketCipher(psk, 30)          # 30-second key window
packet = cipher.encrypt(b"hello")
assert cipher.decrypt(packet) == b"hello"

try:
    cipher.decrypt(packet)              # same nonce again
except CryptoError:
    print("replay rejected")
```

Each packet has this layout:

```
UserID(4) | Timestamp(2, big endian) | Nonce(12) | Ciphertext | Tag(16)
```

The user id is derived from the pre-shared key. `decrypt` raises `CryptoError` when the packet is too short, the user id does not match, the timestamp is more than twice the time window away, the nonce was already seen, or no key of the previous, current or next window opens it. `PacketCipher.stats()` returns the receive-side and send-side `ReplayStats`.

## Replay protection on its own

```python
from phantom.crypto.replay import ReplayGuard

guard = ReplayGuard()
nonce = bytes(12)
assert guard.check_and_mark(nonce) is True
assert guard.check_and_mark(nonce) is False
print(guard.stats())
```

Nonces shorter than 8 bytes are always rejected.

## Congestion control

```python
from phantom.congestion.hysteria2 import Hysteria2Controller

cc = Hysteria2Controller(100, 100)      # up/down Mbps
if cc.can_send(1200):
    cc.on_packet_sent(1, 1200, False)
cc.on_packet_acked(1, 1200, 0.05)       # RTT in seconds
stats = cc.stats()
print(stats.congestion_window, stats.state, cc.brutal_mode)
```

Tracking transport sequence numbers instead of packet numbers:

```python
from phantom.congestion.adapter import CongestionAdapter
from phantom.congestion.hysteria2 import Hysteria2Controller

adapter = CongestionAdapter(Hysteria2Controller(100, 100))
adapter.on_arq_packet_sent(1, 1200)
adapter.on_arq_packet_sent(2, 1200)
acked_bytes, rtt = adapter.on_arq_packet_acked(3)   # acknowledges 1 and 2
print(acked_bytes, adapter.mapping_stats())
```

With `CongestionAdapter(None)` every call is a no-op and `can_send` is always true.

## Configuration

```python
from phantom import config

cfg = config.load("config.yaml")        # raises config.ConfigError on invalid input
print(cfg.listen_port)
```

`config.from_dict(mapping)` builds a `Config` from already-parsed data, `config.default_config()` returns the defaults, and `config.parse_port(addr)` accepts `":port"`, `"host:port"`, `"[v6]:port"` or a bare number. `load` runs `Config.validate()` and then `Config.sync_related()`; `from_dict` does neither.

A minimal configuration file:

```yaml
listen: ":54321"
psk: "<base64 of 32 bytes>"
time_window: 30
```

The PSK must not be empty and `time_window` must be between 1 and 300. The main listen port, and the FakeTCP, WebSocket and metrics ports when those sections are enabled, must all differ.

## What this package does not do

It provides no network server and no command-line program: there is no listener, socket handling, request proxying, link switching, tunnel management or metrics endpoint. The configuration sections for those features (`faketcp`, `websocket`, `ebpf`, `switcher`, `tunnel`, `metrics`) are parsed and validated, but nothing in the package acts on them.

## Running the tests

```
pip install .[test]
pytest
```