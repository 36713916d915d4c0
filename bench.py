"""Quick throughput benchmark for the presenter engine over the loopback viewer."""
import sys, time
sys.stdout.reconfigure(line_buffering=True)

from viewlink.config import load_config
from viewlink.engine import PresenterEngine
from viewlink.frame_pump import PumpResult
from viewlink.loopback import LoopbackTransport
from viewlink.modes import Mode

cfg = load_config("config.yaml")
cfg.engine.auto_connect = True

FRAMES = 120
WARMUP = 20


def bench(mode: Mode):
    cfg.loopback.auto_mode = mode.label
    transport = LoopbackTransport(cfg.loopback)
    engine = PresenterEngine(cfg, transport)
    engine.start()

    times = []
    t_update = []
    t_pump = []
    sent = 0
    print(f"Benchmarking {mode.label}: {FRAMES} ticks ({WARMUP} warmup)...", flush=True)
    for i in range(FRAMES + WARMUP):
        t0 = time.perf_counter()
        engine.advance(1 / 60)
        engine.update()
        t1 = time.perf_counter()
        result = engine.pump()
        t2 = time.perf_counter()
        engine.ticks += 1
        if i < WARMUP:
            continue
        times.append((t2 - t0) * 1000)
        t_update.append((t1 - t0) * 1000)
        t_pump.append((t2 - t1) * 1000)
        if result is PumpResult.SENT:
            sent += 1

    engine.shut_down()

    avg = sum(times) / len(times)
    fps = 1000 / avg if avg > 0 else 0
    print(f"\n{'='*50}", flush=True)
    print(f"RESULTS {mode.label} ({len(times)} ticks, {sent} frames sent)", flush=True)
    print(f"{'='*50}", flush=True)
    print(f"  Total tick:  avg={avg:.1f}ms  min={min(times):.1f}ms  max={max(times):.1f}ms", flush=True)
    print(f"  Effective FPS: {fps:.0f}", flush=True)
    print(f"  Update:      avg={sum(t_update)/len(t_update):.2f}ms", flush=True)
    print(f"  Frame pump:  avg={sum(t_pump)/len(t_pump):.2f}ms", flush=True)
    times.sort()
    p50 = times[len(times) // 2]
    p95 = times[int(len(times) * 0.95)]
    print(f"  P50={p50:.1f}ms  P95={p95:.1f}ms", flush=True)


for m in Mode:
    bench(m)
