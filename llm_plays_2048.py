"""
Automated 2048 Player
Plays a full session with an LLM (or a seeded random policy) choosing the
moves and logs every move to a JSON file.
"""

import argparse
import json
import os
import random
import re
from typing import Callable, List, Optional, Tuple

from openai import OpenAI

from game_2048 import Direction, GameState, RNG, display, init_game, max_tile, move

RULES = """You are playing the game of 2048. Here are the rules:

2048 is played on a plain 4×4 grid, with numbered tiles that slide in four directions: UP, DOWN, LEFT and RIGHT. The game begins with two tiles already in the grid, having a value of either 2 or 4, and another such tile appears in a random empty space after each turn. Tiles slide as far as possible in the chosen direction until they are stopped by either another tile or the edge of the grid. If two tiles of the same number collide while moving, they will merge into a tile with the total value of the two tiles that collided. The resulting tile cannot merge with another tile again in the same move.

If a move causes three consecutive tiles of the same value to slide together, only the two tiles farthest along the direction of motion will combine. If all four spaces in a row or column are filled with tiles of the same value, a move parallel to that row/column will combine the first two and last two. Every merge adds the value of the new tile to your score. You win by creating a 2048 tile, and you may keep playing after that."""

TEXT_INSTRUCTIONS = """Your task is to select a direction of the shift. You may think for as long as you like, but then you need to say on a separate from your reasoning line:

FINAL_RESPONSE: <direction of the shift in uppercase>

Example of the response:

I think, I should shift everything to the right.

FINAL_RESPONSE: RIGHT"""

FUNCTION_INSTRUCTIONS = "Analyze the current grid state and choose the best move using the make_move function."

# choose_move(state) -> (direction, extra fields for the log entry)
Chooser = Callable[[GameState], Tuple[Direction, Optional[dict]]]
# feedback(direction, response_data, state, valid)
Feedback = Callable[[Direction, Optional[dict], GameState, bool], None]


def get_move_tool_schema():
    """Returns the tool schema for function calling mode."""
    return {
        "type": "function",
        "function": {
            "name": "make_move",
            "description": "Make a move in the 2048 game by shifting tiles in the specified direction",
            "parameters": {
                "type": "object",
                "properties": {
                    "direction": {
                        "type": "string",
                        "enum": [d.value for d in Direction],
                        "description": "Direction to shift tiles"
                    }
                },
                "required": ["direction"]
            }
        }
    }


def parse_direction(text: Optional[str]) -> Optional[Direction]:
    """Extract the direction from a `FINAL_RESPONSE: <DIRECTION>` line."""
    if not text:
        return None
    match = re.search(r'FINAL_RESPONSE:\s*(UP|DOWN|LEFT|RIGHT)', text, re.IGNORECASE)
    if match:
        return Direction(match.group(1).lower())
    return None


def describe_state(state: GameState) -> str:
    return f"{display(state.grid)}\nScore: {state.score}"


def build_prompt(state: GameState, first_turn: bool, use_function_calling: bool) -> str:
    """Build the user message for the current grid."""
    grid_display = describe_state(state)

    if first_turn:
        instructions = FUNCTION_INSTRUCTIONS if use_function_calling else TEXT_INSTRUCTIONS
        prompt = f"{RULES}\n\n{instructions}\n\nHere is the current grid state:\n\n{grid_display}"
    else:
        prompt = f"Here is the current grid state:\n\n{grid_display}"

    if not use_function_calling:
        prompt += "\n\nWhere the values should be shifted next?"
    return prompt


def get_llm_move(client, state, messages, model="gpt-4o-mini", max_retries=5, use_function_calling=False):
    """
    Get the next move from the LLM with retry logic.

    Args:
        client: OpenAI client instance
        state: Current GameState
        messages: List of conversation messages (modified in-place)
        model: OpenAI model to use
        max_retries: Maximum number of attempts to get a valid response
        use_function_calling: If True, use function calling mode; otherwise use text parsing mode

    Returns:
        Tuple of (direction, response_data)
        where response_data is a dict with 'llm_reasoning' and, in function
        calling mode, 'tool_call'

    Raises:
        ValueError: If no valid move was obtained after max_retries attempts
    """
    prompt = build_prompt(state, len(messages) == 0, use_function_calling)
    messages.append({"role": "user", "content": prompt})

    last_response = None
    for attempt in range(max_retries):
        try:
            api_params = {
                "model": model,
                "messages": messages,
                "temperature": 0.7
            }

            if use_function_calling:
                api_params["tools"] = [get_move_tool_schema()]
                api_params["tool_choice"] = "auto"

            response = client.chat.completions.create(**api_params)
            message = response.choices[0].message

            if use_function_calling:
                reasoning = message.content if message.content else ""

                if message.tool_calls:
                    tool_call = message.tool_calls[0]
                    args = json.loads(tool_call.function.arguments)
                    direction = Direction(args["direction"].lower())

                    messages.append({
                        "role": "assistant",
                        "content": reasoning,
                        "tool_calls": [{
                            "id": tool_call.id,
                            "type": "function",
                            "function": {
                                "name": tool_call.function.name,
                                "arguments": tool_call.function.arguments
                            }
                        }]
                    })

                    # The tool response is added by the feedback hook once the move is applied
                    return direction, {
                        "llm_reasoning": reasoning,
                        "tool_call": {
                            "id": tool_call.id,
                            "name": tool_call.function.name,
                            "arguments": args
                        }
                    }

                print(f"⚠️  Attempt {attempt + 1}/{max_retries}: No tool call in response. Retrying...")
                last_response = reasoning
            else:
                full_response = message.content
                last_response = full_response

                direction = parse_direction(full_response)
                if direction is not None:
                    messages.append({"role": "assistant", "content": full_response})
                    return direction, {"llm_reasoning": full_response}

                print(f"⚠️  Attempt {attempt + 1}/{max_retries}: Could not parse direction from LLM response. Retrying...")

        except Exception as e:
            print(f"⚠️  Attempt {attempt + 1}/{max_retries}: API error: {e}. Retrying...")
            last_response = str(e)

    raise ValueError(f"Could not get valid move after {max_retries} attempts. Last response: {last_response}")


def make_llm_chooser(client, model="gpt-4o-mini", context_window_moves=5,
                     use_function_calling=False) -> Tuple[Chooser, Feedback]:
    """
    Wrap an OpenAI client into a chooser and a feedback hook for play_game.

    Only the last `context_window_moves` valid exchanges are kept in the
    conversation; invalid moves are answered with an error message so the
    model can pick another direction.
    """
    messages: List[dict] = []
    valid_move_history: List[list] = []
    turn_start = [0]

    def choose_move(state):
        turn_start[0] = len(messages)
        return get_llm_move(client, state, messages, model, use_function_calling=use_function_calling)

    def feedback(direction, response_data, state, valid):
        name = direction.value.upper()
        if not valid:
            if use_function_calling:
                messages.append({
                    "role": "tool",
                    "tool_call_id": response_data["tool_call"]["id"],
                    "content": f"Error: Invalid move. The grid state did not change. No tiles could move or merge in the {name} direction. Please choose a different direction."
                })
            else:
                messages.append({
                    "role": "user",
                    "content": f"That move ({name}) was invalid - the grid state did not change. This means no tiles could move or merge in that direction. Please choose a different direction where tiles can actually move."
                })
            return

        if use_function_calling:
            messages.append({
                "role": "tool",
                "tool_call_id": response_data["tool_call"]["id"],
                "content": f"Move successful. New score: {state.score}"
            })

        # user prompt, assistant answer and (in function calling mode) tool response
        exchange_size = 3 if use_function_calling else 2
        exchange = messages[turn_start[0]:turn_start[0] + exchange_size]
        valid_move_history.append(exchange)
        del valid_move_history[:-context_window_moves]

        messages.clear()
        for past_exchange in valid_move_history:
            messages.extend(past_exchange)

    return choose_move, feedback


def random_policy(rng: RNG = random.random) -> Chooser:
    """Chooser that picks one of the four directions uniformly at random."""
    directions = list(Direction)

    def choose_move(state):
        return directions[min(int(rng() * len(directions)), len(directions) - 1)], None

    return choose_move


def _write_log(log_file, game_log):
    with open(log_file, 'w') as f:
        json.dump(game_log, f, indent=2)


def _log_entry(state: GameState, action: str) -> dict:
    return {
        "game_state": [row[:] for row in state.grid],
        "action": action,
        "current_score": state.score,
        "max_tile": max_tile(state.grid),
        "won": state.won
    }


def play_game(choose_move: Chooser, log_file="game_log.json", rng: RNG = random.random,
              max_moves=1000, max_consecutive_invalid_moves=10,
              feedback: Optional[Feedback] = None, name="random", mode=None) -> GameState:
    """
    Play a full game of 2048 and log all moves.

    Args:
        choose_move: Callable returning (direction, extra log fields) for a state
        log_file: Path to the JSON log file
        rng: Random source used for tile spawns
        max_moves: Maximum number of moves to prevent infinite loops
        max_consecutive_invalid_moves: Maximum consecutive invalid moves before stopping
        feedback: Optional hook told about every attempted move and whether it was valid
        name: Label for progress output
        mode: Optional mode marker stored in the initial log entry

    Returns:
        Final GameState
    """
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    state = init_game(rng)
    game_log = []
    move_count = 0
    game_end_reason = "unknown"
    consecutive_invalid_moves = 0

    initial_entry = _log_entry(state, "INITIAL")
    if mode:
        initial_entry["mode"] = mode
    game_log.append(initial_entry)

    while not state.over and move_count < max_moves:
        try:
            print(f"Move {move_count + 1}, score {state.score}, player {name}")

            direction, response_data = choose_move(state)
            direction = Direction(direction)
            new_state = move(state, direction, rng)

            # An invalid move leaves the state untouched
            if new_state is state:
                consecutive_invalid_moves += 1
                print(f"\n⚠️  Invalid move {direction.value.upper()}! State didn't change. Retrying... ({consecutive_invalid_moves}/{max_consecutive_invalid_moves})")

                log_entry = _log_entry(state, direction.value.upper())
                log_entry["invalid_move"] = True
                log_entry.update(response_data or {})
                game_log.append(log_entry)

                if consecutive_invalid_moves >= max_consecutive_invalid_moves:
                    print(f"\n❌ Too many consecutive invalid moves ({max_consecutive_invalid_moves}). Game stopped.")
                    game_end_reason = f"too_many_invalid_moves_{max_consecutive_invalid_moves}"
                    break

                if feedback:
                    feedback(direction, response_data, state, False)
                continue

            consecutive_invalid_moves = 0
            if new_state.won and not state.won:
                print(f"\n🎉 Reached 2048 on move {move_count + 1}!")
            state = new_state
            move_count += 1

            if feedback:
                feedback(direction, response_data, state, True)

            log_entry = _log_entry(state, direction.value.upper())
            log_entry.update(response_data or {})
            game_log.append(log_entry)

            _write_log(log_file, game_log)

        except Exception as e:
            print(f"\n❌ Error occurred: {e}")
            game_end_reason = f"error: {str(e)}"
            break

    if game_end_reason == "unknown":
        if state.over:
            game_end_reason = "no_moves_available"
        elif move_count >= max_moves:
            game_end_reason = "max_moves_reached"

    print("\n" + "=" * 50)
    if game_end_reason == "max_moves_reached":
        print("Maximum moves reached!")
    elif game_end_reason.startswith("too_many_invalid_moves"):
        print("Game stopped due to too many consecutive invalid moves!")
    elif game_end_reason.startswith("error:"):
        print("Game stopped due to error!")
    else:
        print("Game Over!")
    print("=" * 50)

    print(f"Final Score: {state.score}")
    print(f"Max Tile: {max_tile(state.grid)}")
    print(f"Total Moves: {move_count}")
    print(f"Game End Reason: {game_end_reason}")
    print(f"Game log saved to: {log_file}")

    game_log.append({
        "final_score": state.score,
        "max_tile": max_tile(state.grid),
        "won": state.won,
        "game_end_reason": game_end_reason,
        "total_moves": move_count
    })
    _write_log(log_file, game_log)

    return state


def play_game_with_llm(api_key, base_url, log_file="game_log.json", model="gpt-4o-mini", rng: RNG = random.random,
                       max_moves=1000, max_consecutive_invalid_moves=10, context_window_moves=5,
                       use_function_calling=False) -> GameState:
    """
    Play a full game of 2048 using an LLM and log all moves.

    Args:
        api_key: OpenAI API key
        base_url: Base URL for API
        log_file: Path to the JSON log file
        model: OpenAI model to use
        rng: Random source used for tile spawns
        max_moves: Maximum number of moves to prevent infinite loops
        max_consecutive_invalid_moves: Maximum consecutive invalid moves before stopping
        context_window_moves: Number of valid moves to keep in conversation context
        use_function_calling: If True, use function calling mode; otherwise use text parsing mode

    Returns:
        Final GameState
    """
    client = OpenAI(api_key=api_key, base_url=base_url)
    choose_move, feedback = make_llm_chooser(client, model, context_window_moves, use_function_calling)

    return play_game(
        choose_move,
        log_file=log_file,
        rng=rng,
        max_moves=max_moves,
        max_consecutive_invalid_moves=max_consecutive_invalid_moves,
        feedback=feedback,
        name=model,
        mode="function_calling" if use_function_calling else "text_parsing",
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Automated player for the 2048 game')
    parser.add_argument('--policy', choices=['llm', 'random'], default='llm', help='Who chooses the moves (default: llm)')
    parser.add_argument('--model_name', type=str, help='Name of the model (required for --policy llm)')
    parser.add_argument('--base_url', type=str, help='Base URL')
    parser.add_argument('--api_key', type=str, help='API key')
    parser.add_argument('--context_window', type=int, default=5, help='Number of valid moves to keep in context (default: 5)')
    parser.add_argument('--use_function_calling', action='store_true', help='Use native function calling instead of text parsing')
    parser.add_argument('--seed', type=int, default=42, help='Seed for tile spawns and the random policy (default: 42)')
    parser.add_argument('--max_moves', type=int, default=10000, help='Maximum number of moves (default: 10000)')
    parser.add_argument('--log_dir', type=str, default='game_logs', help='Directory for game logs (default: game_logs)')

    args = parser.parse_args()

    spawn_rng = random.Random(args.seed).random

    if args.policy == 'random':
        log_file = os.path.join(args.log_dir, f"game_log_random_{args.seed}.json")
        play_game(
            random_policy(random.Random(args.seed + 1).random),
            log_file=log_file,
            rng=spawn_rng,
            max_moves=args.max_moves,
        )
    else:
        if not (args.model_name and args.base_url and args.api_key):
            parser.error('--model_name, --base_url and --api_key are required for --policy llm')

        model_short = args.model_name.split('/')[-1]
        fc_suffix = "_fc" if args.use_function_calling else ""
        log_file = os.path.join(args.log_dir, f"game_log_{model_short}{fc_suffix}.json")

        play_game_with_llm(
            api_key=args.api_key,
            base_url=args.base_url,
            log_file=log_file,
            model=args.model_name,
            rng=spawn_rng,
            max_moves=args.max_moves,
            context_window_moves=args.context_window,
            use_function_calling=args.use_function_calling,
        )
