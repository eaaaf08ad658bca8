"""
Plot results of automated 2048 games.
Reads the JSON game logs written by llm_plays_2048.py and creates a final
score / max tile barplot and a score progression plot.
"""

import argparse
import json
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np


def get_run_name(filename):
    """Extract the run name from a log filename (game_log_<name>.json)."""
    return filename.replace('game_log_', '').replace('.json', '')


def load_game_log(log_file):
    """Load a game log JSON file and extract scores per accepted move."""
    with open(log_file, 'r') as f:
        data = json.load(f)

    scores = []
    moves = []
    move_number = 0

    for entry in data:
        if 'final_score' in entry:
            break
        if entry.get('invalid_move'):
            continue
        scores.append(entry['current_score'])
        moves.append(move_number)
        move_number += 1

    return moves, scores


def load_final_stats(log_file):
    """Load a game log JSON file and extract final score and stats."""
    with open(log_file, 'r') as f:
        data = json.load(f)

    if not data:
        return None

    final_entry = data[-1]
    if 'final_score' in final_entry:
        return {
            'final_score': final_entry['final_score'],
            'total_moves': final_entry.get('total_moves', 0),
            'max_tile': final_entry.get('max_tile', 0),
            'won': final_entry.get('won', False),
            'end_reason': final_entry.get('game_end_reason', 'unknown')
        }

    # Interrupted game: fall back to the last logged move
    valid_entries = [entry for entry in data if not entry.get('invalid_move')]
    last_entry = valid_entries[-1] if valid_entries else final_entry
    return {
        'final_score': last_entry['current_score'],
        'total_moves': len(valid_entries) - 1,
        'max_tile': last_entry.get('max_tile', 0),
        'won': last_entry.get('won', False),
        'end_reason': 'unknown'
    }


def _load_all(log_dir, loader):
    results = {}
    for log_file in sorted(Path(log_dir).glob('game_log_*.json')):
        run_name = get_run_name(log_file.name)
        try:
            loaded = loader(log_file)
        except (OSError, ValueError, KeyError) as e:
            print(f"Error loading {log_file}: {e}")
            continue
        if loaded:
            results[run_name] = loaded
    return results


def plot_final_scores(log_dir='game_logs', output_file='final_scores_barplot.png'):
    """
    Create a barplot of final scores and max tiles for all runs.

    Returns:
        Dict mapping run name to its final stats (empty if no logs were found)
    """
    run_stats = _load_all(log_dir, load_final_stats)

    if not run_stats:
        print("No game logs found!")
        return {}

    for run_name, stats in run_stats.items():
        print(f"{run_name}: Score={stats['final_score']}, Max tile={stats['max_tile']}, "
              f"Moves={stats['total_moves']}, Reason={stats['end_reason']}")

    sorted_runs = sorted(run_stats.items(), key=lambda x: x[1]['final_score'], reverse=True)

    run_names = [name for name, _ in sorted_runs]
    scores = [stats['final_score'] for _, stats in sorted_runs]
    tiles = [stats['max_tile'] for _, stats in sorted_runs]
    moves = [stats['total_moves'] for _, stats in sorted_runs]
    positions = np.arange(len(run_names))

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(14, 10))

    panels = [
        (ax1, scores, 'Final Score', '2048 Final Scores by Run', plt.cm.viridis),
        (ax2, tiles, 'Max Tile', 'Largest Tile by Run', plt.cm.plasma),
    ]
    for ax, values, ylabel, title, cmap in panels:
        colors = cmap(np.linspace(0, 1, len(run_names)))
        bars = ax.bar(positions, values, color=colors, alpha=0.8, edgecolor='black', linewidth=1.2)

        ax.set_xlabel('Run', fontsize=12, fontweight='bold')
        ax.set_ylabel(ylabel, fontsize=12, fontweight='bold')
        ax.set_title(title, fontsize=14, fontweight='bold', pad=20)
        ax.set_xticks(positions)
        ax.set_xticklabels(run_names, rotation=45, ha='right', fontsize=9)
        ax.grid(True, alpha=0.3, axis='y')

        for bar, value in zip(bars, values):
            ax.text(bar.get_x() + bar.get_width() / 2., bar.get_height(),
                    f'{int(value)}',
                    ha='center', va='bottom', fontsize=8, fontweight='bold')

    # Tile values double, a log scale keeps small runs visible
    ax2.set_yscale('log', base=2)

    plt.tight_layout()
    plt.savefig(output_file, dpi=300, bbox_inches='tight')
    print(f"\nBarplot saved to {output_file}")
    plt.close(fig)

    print("\n" + "=" * 60)
    print("SUMMARY STATISTICS")
    print("=" * 60)
    print(f"Best Score: {run_names[0]} with {scores[0]}")
    print(f"Worst Score: {run_names[-1]} with {scores[-1]}")
    print(f"Average Score: {np.mean(scores):.1f}")
    print(f"Median Score: {np.median(scores):.1f}")
    print(f"Average Moves: {np.mean(moves):.1f}")
    print(f"Runs reaching 2048: {sum(1 for _, stats in sorted_runs if stats['won'])}/{len(sorted_runs)}")
    print("=" * 60)

    return run_stats


def plot_score_progression(log_dir='game_logs', output_file='scores_per_turn.png'):
    """Plot the score after every accepted move for all runs."""
    run_data = _load_all(log_dir, load_game_log)

    if not run_data:
        print("No game logs found!")
        return {}

    fig, ax = plt.subplots(figsize=(14, 8))

    for run_name, (moves, scores) in sorted(run_data.items()):
        print(f"Loaded {run_name}: {len(moves)} moves, final score {scores[-1] if scores else 0}")
        ax.plot(moves, scores, marker='o', markersize=2, linewidth=1.5, label=run_name, alpha=0.8)

    ax.set_xlabel('Move Number', fontsize=12)
    ax.set_ylabel('Score', fontsize=12)
    ax.set_title('2048 Game Score Progression by Run', fontsize=14, fontweight='bold')
    ax.legend(bbox_to_anchor=(1.05, 1), loc='upper left', fontsize=9)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_file, dpi=300, bbox_inches='tight')
    print(f"\nPlot saved to {output_file}")
    plt.close(fig)

    return run_data


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Plot 2048 game logs')
    parser.add_argument('--log_dir', type=str, default='game_logs',
                        help='Directory containing game log JSON files')
    parser.add_argument('--output', type=str, default='final_scores_barplot.png',
                        help='Output filename for the final score barplot')
    parser.add_argument('--progression_output', type=str, default='scores_per_turn.png',
                        help='Output filename for the score progression plot')

    args = parser.parse_args()

    plot_final_scores(args.log_dir, args.output)
    plot_score_progression(args.log_dir, args.progression_output)
