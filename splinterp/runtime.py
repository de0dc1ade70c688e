from typing import Dict

"""Define the platform output handlers here"""
def createRuntimeStd() -> Dict:
  return {
    'output': lambda value: print(f"Output={value}"),
  }

def createRuntimeCapture(sink: list) -> Dict:
  return {
    'output': sink.append,
  }
