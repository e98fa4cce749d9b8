"""Congestion control: RTT, pacing, bandwidth and loss estimation, the Hysteria2 controller and its sequence adapter."""