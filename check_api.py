import requests
import time
import sys

BASE_URL = "http://127.0.0.1:8001/api"

def run_check():
    print("--- Checking SmartFlow API ---")

    # 1. Snapshot
    try:
        state = requests.get(f"{BASE_URL}/state").json()
    except requests.RequestException as e:
        print(f"Error connecting to server: {e}")
        return False
    print(f"Tick {state['tick']}: {len(state['vehicles'])} vehicles, strategy {state['strategy']}")

    lights = {l["direction"]: l["state"] for l in state["lights"]}
    permissive_axes = {"ns" if d in ("north", "south") else "ew" for d, s in lights.items() if s != "red"}
    if len(permissive_axes) > 1:
        print(f"FAIL: Conflicting lights {lights}")
        return False
    print("PASS: Lights mutually exclusive.")

    # 2. Switch to reinforcement learning and let it decide a few times
    print("\nEnabling reinforcement control...")
    requests.post(f"{BASE_URL}/signals/strategy", json={"strategy": "reinforcement"})
    time.sleep(3)

    stats = requests.get(f"{BASE_URL}/rl/stats").json()
    print("RL Stats:", stats)
    if stats["q_table_size"] > 0:
        print("PASS: Agent is learning.")
    else:
        print("WARN: Q-table still empty, simulation may be slowed down.")

    # 3. Coordination
    print("\nSelecting predictive coordination...")
    requests.post(f"{BASE_URL}/network/strategy", json={"strategy": "predictive"})
    time.sleep(2)
    network = requests.get(f"{BASE_URL}/network").json()
    print(f"Network efficiency: {network['coordination_efficiency']:.1f}%, hotspots: {network['congestion_hotspots']}")

    # 4. Restore defaults
    requests.post(f"{BASE_URL}/signals/strategy", json={"strategy": "fixed"})
    requests.post(f"{BASE_URL}/network/strategy", json={"strategy": None})
    print("\nDone.")
    return True

if __name__ == "__main__":
    sys.exit(0 if run_check() else 1)
